import os
from typing import Optional


class Settings:
    def __init__(self, **overrides):
        self.HOST = os.environ.get('HOST', '0.0.0.0')
        self.PORT = int(os.environ.get('PORT', '8080'))
        # Optional strict origin check for WebSocket upgrades
        self.ALLOWED_ORIGIN: Optional[str] = os.environ.get('ALLOWED_ORIGIN') or None
        self.LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
        # When set, logs are also written to a timestamped file in this directory
        self.LOG_DIR: Optional[str] = os.environ.get('LOG_DIR') or None

        # Token bucket per connection
        self.RATE_LIMIT_BURST = int(os.environ.get('RATE_LIMIT_BURST', '20'))
        self.RATE_LIMIT_REFILL_MS = int(os.environ.get('RATE_LIMIT_REFILL_MS', '1000'))

        # Sweep timeouts (seconds)
        self.INVITATION_TIMEOUT_SEC = float(os.environ.get('INVITATION_TIMEOUT_SEC', '60'))
        self.LOBBY_TIMEOUT_SEC = float(os.environ.get('LOBBY_TIMEOUT_SEC', '300'))
        self.STALE_DISCONNECT_SEC = float(os.environ.get('STALE_DISCONNECT_SEC', '300'))
        self.MAX_GAME_AGE_SEC = float(os.environ.get('MAX_GAME_AGE_SEC', '3600'))

        # Sweep intervals (seconds)
        self.LOBBY_SWEEP_SEC = float(os.environ.get('LOBBY_SWEEP_SEC', '30'))
        self.GAME_SWEEP_SEC = float(os.environ.get('GAME_SWEEP_SEC', '60'))

        # Lobby chat
        self.CHAT_HISTORY = int(os.environ.get('CHAT_HISTORY', '100'))
        self.CHAT_MAX_LENGTH = int(os.environ.get('CHAT_MAX_LENGTH', '500'))

        for key, value in overrides.items():
            if not hasattr(self, key):
                raise AttributeError(f"Unknown setting: {key}")
            setattr(self, key, value)

    @property
    def rate_refill_sec(self) -> float:
        return self.RATE_LIMIT_REFILL_MS / 1000.0
