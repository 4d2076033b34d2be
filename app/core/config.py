from typing import List, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    app_name: str = "RideSupport Chatbot API"

    # Persistence: no URL keeps conversations in memory
    database_url: Optional[str] = None

    # External trip services
    trip_provider: str = "mock"  # "mock" or "http"
    booking_api_url: str = "http://localhost:3000/api/bookings"
    driver_api_url: str = "http://localhost:3000/api/drivers"
    traffic_api_url: str = "http://localhost:3000/api/traffic"
    payment_api_url: str = "http://localhost:3000/api/payments"
    notification_api_url: str = "http://localhost:3000/api/notifications"
    user_api_url: str = "http://localhost:3000/api/users"
    upstream_timeout_seconds: float = 1.5

    # NLP
    enable_nlp: bool = True
    nlp_confidence_threshold: float = 0.7
    low_confidence_floor: float = 0.3

    # Safety
    enable_safety_detection: bool = True
    safety_hotline: str = "1-800-SAFE-RIDE"
    emergency_number: str = "911"

    # Flow policy
    delay_threshold_minutes: int = 15
    free_cancel_window_seconds: int = 120
    cancellation_fee: float = 3.50
    max_contact_attempts: int = 3

    cors_origins: List[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]

    log_level: str = "INFO"
    log_json: bool = False

    class Config:
        env_file = ".env"

settings = Settings()
