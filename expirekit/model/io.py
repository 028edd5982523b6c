import logging
import os
from typing import Optional

import joblib
from expirekit.core.config import settings

logger = logging.getLogger(__name__)

def model_path(model_dir: str = None, model_name: str = None) -> str:
    model_dir = model_dir or settings.MODEL_DIR
    os.makedirs(model_dir, exist_ok=True)
    return os.path.join(model_dir, model_name or settings.MODEL_NAME)

def save_snapshot(snapshot, path: str = None) -> str:
    """Dump regressor, classifier and category mapping together."""
    path = path or model_path()
    joblib.dump(snapshot, path)
    logger.info(f"Saved ensemble snapshot to {path}")
    return path

def load_snapshot(path: str = None) -> Optional[object]:
    path = path or model_path()
    if not os.path.exists(path):
        return None
    snapshot = joblib.load(path)
    logger.info(f"Loaded ensemble snapshot trained at {snapshot.trained_at} from {path}")
    return snapshot
