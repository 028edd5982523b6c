import numpy as np
from sklearn.dummy import DummyClassifier
from sklearn.ensemble import RandomForestClassifier, RandomForestRegressor

def build_regressor(n_estimators: int = 50, max_features: float = 0.8,
                    random_state: int = 42) -> RandomForestRegressor:
    return RandomForestRegressor(
        n_estimators=n_estimators,
        max_features=max_features,
        bootstrap=True,
        random_state=random_state,
    )

def build_classifier(n_estimators: int = 50, max_features: float = 0.8,
                     random_state: int = 42) -> RandomForestClassifier:
    return RandomForestClassifier(
        n_estimators=n_estimators,
        max_features=max_features,
        bootstrap=True,
        random_state=random_state,
    )

def build_baseline(constant: int) -> DummyClassifier:
    return DummyClassifier(strategy="constant", constant=int(constant))


def predict_proba_positive(model, X) -> np.ndarray:
    """Probability of class 1, also for single-class (baseline) models."""
    proba = model.predict_proba(X)
    classes = [int(c) for c in getattr(model, "classes_", [])]
    if 1 in classes:
        return proba[:, classes.index(1)].astype(float)
    return np.zeros((proba.shape[0],), dtype=float)
