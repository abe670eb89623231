# fitcoach/common/config.py
import os
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parents[2]
load_dotenv(BASE_DIR / ".env")

DATA_DIR = Path(os.environ.get("FITCOACH_DATA_DIR", BASE_DIR / "outputs" / "state"))
DEMO_QUOTA_STORE = DATA_DIR / "demo_quota.json"
DEVICE_IDENTITY_STORE = DATA_DIR / "device_identity.json"
ENTITLEMENT_STORE = DATA_DIR / "entitlements.json"
ONBOARDING_STORE = DATA_DIR / "onboarding.json"

# Rep counter (depth ratios are hip-knee / ankle-knee in normalized image space)
DESCENT_THRESHOLD = 0.12
RELEASE_THRESHOLD = 0.04
MIN_DWELL_TIME_S = 0.18
MIN_CONFIDENCE = 0.45
SMOOTHING_ALPHA = 0.35
REP_COMPLETION_HOLD_S = 0.25
INVALID_MOTION_GRACE_S = 0.45
SAMPLE_RESET_INTERVAL_S = 1.50

# Speech
SPEECH_COOLDOWN_S = 3.0
SPEECH_RATE_WPM = 160

# Camera
CAMERA_INDEX = 0
FPS_TARGET = 30

# Demo quota
MAX_DEMO_ATTEMPTS = 2
LOGGING_ATTEMPTS = 2
HTTP_TIMEOUT_S = 4.0
EVALUATION_TIMEOUT_S = 3.0
