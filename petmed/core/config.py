from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    APP_NAME: str = "PetMed Medical Records"
    VERSION: str = "1.0.0"
    LOG_LEVEL: str = "INFO"

    # Remote medical-record backend
    MEDICAL_API_URL: str = "http://localhost:8080/api"
    MEDICAL_API_TOKEN: Optional[str] = None
    MEDICAL_API_TIMEOUT: float = 10.0

    # Ids handed to records the backend has not accepted yet
    LOCAL_ID_PREFIX: str = "temp-"

    # Banner texts
    BANNER_FETCH_FAILED: str = "Records could not be loaded."
    BANNER_SAVED_LOCALLY: str = "Saved locally; will retry."
    BANNER_UPDATED_LOCALLY: str = "Changes saved locally; will retry."
    BANNER_DELETE_FAILED: str = "Record could not be deleted. Please try again."

    # Date window pickers (days relative to today, inclusive)
    APPOINTMENT_DAYS_BACK: int = 0
    APPOINTMENT_DAYS_FORWARD: int = 29
    SCHEDULE_DAYS_BACK: int = 30
    SCHEDULE_DAYS_FORWARD: int = 59
    MEDICATION_END_DAYS_BACK: int = 0
    MEDICATION_END_DAYS_FORWARD: int = 119

    # Time slot pickers ("HH:MM", inclusive range)
    APPOINTMENT_SLOT_START: str = "08:00"
    APPOINTMENT_SLOT_END: str = "18:00"
    TREATMENT_SLOT_START: str = "06:00"
    TREATMENT_SLOT_END: str = "17:30"
    SLOT_STEP_MINUTES: int = 30

    # Day/month/year picker year range around the current year
    VACCINATION_YEARS_BACK: int = 8
    VACCINATION_YEARS_FORWARD: int = 1

    class Config:
        env_file = ".env"


settings = Settings()
