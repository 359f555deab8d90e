"""Face recognition building blocks (identity/eigenspace/matcher/forest/gallery).

The top-level `EigenObjectRecognizer` wires them together; each piece can be
used on its own.
"""
