"""Centralized constants for spacedeck.

All magic numbers and configuration defaults live here so every layer
imports from a single source of truth.
"""

# ---------- Memory model ----------
DEFAULT_PARAMETERS_VERSION = "fsrs-6-default"
DEFAULT_WEIGHTS = (
    0.212,
    1.2931,
    2.3065,
    8.2956,
    6.4133,
    0.8334,
    3.0194,
    0.001,
    1.8722,
    0.1666,
    0.796,
    1.4835,
    0.0614,
    0.2629,
    1.6483,
    0.6014,
    1.8729,
    0.5425,
    0.0912,
    0.0658,
    0.1542,
)
WEIGHT_COUNT = 21
DEFAULT_DESIRED_RETENTION = 0.9
DEFAULT_MAXIMUM_INTERVAL = 36500  # days
DEFAULT_LEARNING_STEPS_MINUTES = (1.0, 10.0)
DEFAULT_RELEARNING_STEPS_MINUTES = (10.0,)
STABILITY_MIN = 0.001
DIFFICULTY_MIN = 1.0
DIFFICULTY_MAX = 10.0

# ---------- Queues ----------
DEFAULT_STUDY_QUEUE_LIMIT = 10
DEFAULT_QUIZ_QUEUE_LIMIT = 10

# ---------- Mastery scoring ----------
EMA_ALPHA = 0.1
RATING_ACCURACY_SAMPLES = {"again": 0.0, "hard": 0.6, "good": 1.0, "easy": 1.0}
SCORE_WINDOW_DAYS = {"d7": 7, "d30": 30, "d90": 90}

# ---------- Grades ----------
GRADE_MIN_REVIEWS = 10
GRADE_RECENT_REVIEWS = 30

# ---------- Daily load ----------
LOAD_TRAILING_DAYS = 7
LOAD_MIN_TODAY = 50
LOAD_RATIO = 1.5
LOAD_ABSOLUTE = 100
