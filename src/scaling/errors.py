"""Error sink: logs errors and forwards them to an error stream."""

import logging
import traceback
from datetime import datetime, timezone
from typing import Optional

import redis.asyncio as redis

logger = logging.getLogger(__name__)

DEFAULT_ERROR_STREAM = "autoscaler-errors"


class ErrorRecorder:
    """Records errors through logging and, when configured, a Redis stream.

    The stream is the hand-off point to the external error-tracking
    service. Forwarding problems are logged and never raised.
    """

    def __init__(
        self,
        server_name: str = "",
        redis_url: Optional[str] = None,
        stream_name: str = DEFAULT_ERROR_STREAM,
        max_stream_length: int = 10000,
    ):
        """Initialize the recorder.

        Args:
            server_name: Tag attached to every forwarded event
            redis_url: Redis connection URL; None disables forwarding
            stream_name: Stream receiving error events
            max_stream_length: Approximate cap on the stream length
        """
        self.server_name = server_name
        self.redis_url = redis_url
        self.stream_name = stream_name
        self.max_stream_length = max_stream_length
        self.redis: Optional[redis.Redis] = None
        if redis_url:
            self.redis = redis.from_url(redis_url, decode_responses=True)

    async def connect(self) -> bool:
        """Check the Redis connection; forwarding is disabled when it fails."""
        if self.redis is None:
            return False
        try:
            await self.redis.ping()
            logger.info(f"Error recorder connected to Redis: {self.redis_url}")
            return True
        except Exception as e:
            logger.warning(f"Failed to connect to Redis: {e}. Errors will only be logged.")
            await self.close()
            return False

    @property
    def is_forwarding(self) -> bool:
        return self.redis is not None

    async def record(self, message: str, error: Optional[BaseException] = None) -> None:
        """Record an error.

        Args:
            message: Description of what failed
            error: The exception, if there is one
        """
        if error is not None:
            logger.error(message, exc_info=(type(error), error, error.__traceback__))
        else:
            logger.error(message)
        await self._forward("error", message, error)

    async def warn(self, message: str) -> None:
        """Record a non-fatal anomaly that operators should see."""
        logger.warning(message)
        await self._forward("warning", message, None)

    async def _forward(self, level: str, message: str, error: Optional[BaseException]) -> None:
        if self.redis is None:
            return

        event = {
            "level": level,
            "server": self.server_name,
            "message": message,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        if error is not None:
            event["error_type"] = type(error).__name__
            event["error"] = str(error)
            event["traceback"] = "".join(
                traceback.format_exception(type(error), error, error.__traceback__)
            )

        try:
            await self.redis.xadd(
                self.stream_name,
                event,
                maxlen=self.max_stream_length,
                approximate=True,
            )
        except Exception as e:
            logger.warning(f"Failed to forward error to {self.stream_name}: {e}")

    async def close(self) -> None:
        if self.redis is not None:
            client, self.redis = self.redis, None
            await client.aclose()
