from pydantic_settings import BaseSettings
from pydantic import Field

class Settings(BaseSettings):
    DATABASE_URL: str = Field(..., description="SQLAlchemy URL of the inventory database")
    MODEL_DIR: str = Field(default="models")
    MODEL_NAME: str = Field(default="consumption_forest.joblib")
    PERSIST_MODELS: bool = Field(default=False, description="Dump the ensemble snapshot after training")

    KNN_NEIGHBORS: int = Field(default=5, ge=1)
    RF_N_ESTIMATORS: int = Field(default=50, ge=50)
    RF_MAX_FEATURES: float = Field(default=0.8, gt=0.5, le=1.0)
    RANDOM_SEED: int = Field(default=42)

    TREND_WINDOW_DAYS: int = Field(default=30, ge=14)
    TRAIN_ON_STARTUP: bool = Field(default=False)
    RETRAIN_INTERVAL_MINUTES: int = Field(default=0, ge=0, description="0 disables scheduled retraining")

    LOG_LEVEL: str = Field(default="INFO")
    HOST: str = Field(default="0.0.0.0")
    PORT: int = Field(default=8000)

    class Config:
        env_file = ".env"

settings = Settings()
