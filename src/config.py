# 识别引擎默认参数（与 Kinect 深度相机管线约定一致）
DEFAULT_EIGEN_DISTANCE_THRESHOLD = 2000.0
DEFAULT_EPS = 0.001

# Label returned when the nearest gallery entry is rejected by the threshold.
UNRECOGNIZED_LABEL = ""

# Shortened IDs drop this many trailing decimal digits.
SHORTEN_DIVISOR = 100

IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".bmp")
LANDMARK_SUFFIX = ".npy"

STATE_FILENAME = "eigen_recognizer.pkl"
STATE_SCHEMA_VERSION = "v1"

# cv2.ml.RTrees parameters. A node with <= min_sample_count samples is a leaf, so 1 lets
# galleries with a single record per person still split.
FOREST_MAX_DEPTH = 10
FOREST_MIN_SAMPLE_COUNT = 1
FOREST_MAX_TREES = 100
FOREST_ACCURACY = 0.01
