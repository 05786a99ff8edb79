"""Redis implementation of QueueClient.

The producer stores jobs in a Bull-style layout, one pair of keys per
queue class:

    <prefix>:<class>:wait          list of pending job identifiers
    <prefix>:<class>:<identifier>  hash holding the JSON payload under "data"

Popping is destructive: LPOP removes the identifier atomically, so two
workers racing on the same class never receive the same identifier. A
crash between the pop and the final status update loses the job.
"""

import json
import logging
from typing import Optional

import redis
from pydantic import ValidationError

from ..errors import JobDecodeError, QueueError
from .backends import QueueClient
from .models import Job, QueueClass

PAYLOAD_FIELD = "data"
WORKER_OWNED_FIELDS = frozenset({"status", "output_path", "file_name"})


class RedisQueue(QueueClient):
    """Redis-backed queue client sharing one bounded connection pool.

    Features:
    - Atomic destructive pop via LPOP
    - Payload validation through the Job model
    - Distinct errors for transport failures and undecodable payloads
    - Producer helper (push_job) writing the same layout
    """

    def __init__(
        self,
        client: redis.Redis,
        key_prefix: str = "bull",
        logger: Optional[logging.Logger] = None,
    ):
        """Initialize queue client.

        Args:
            client: Redis client (decode_responses=True expected)
            key_prefix: Namespace shared with the producer
            logger: Logger for this client (default: module logger)
        """
        self.client = client
        self.key_prefix = key_prefix
        self.logger = logger or logging.getLogger(__name__)

    @classmethod
    def from_config(cls, config, logger: Optional[logging.Logger] = None) -> "RedisQueue":
        """Build a client with a bounded connection pool from RedisConfig."""
        pool = redis.ConnectionPool(
            host=config.host,
            port=config.port,
            db=config.db,
            password=config.password,
            max_connections=config.pool_size,
            socket_timeout=config.socket_timeout_s,
            socket_connect_timeout=config.socket_timeout_s,
            decode_responses=True,
        )
        return cls(redis.Redis(connection_pool=pool), key_prefix=config.key_prefix, logger=logger)

    def wait_key(self, queue_class: QueueClass) -> str:
        return f"{self.key_prefix}:{QueueClass(queue_class).value}:wait"

    def job_key(self, queue_class: QueueClass, queue_id: str) -> str:
        return f"{self.key_prefix}:{QueueClass(queue_class).value}:{queue_id}"

    def pop_job(self, queue_class: QueueClass) -> Optional[Job]:
        name = QueueClass(queue_class).value

        try:
            queue_id = self.client.lpop(self.wait_key(queue_class))
        except redis.RedisError as e:
            raise QueueError(name, f"failed to pop job: {e}") from e

        if queue_id is None:
            return None

        try:
            raw = self.client.hget(self.job_key(queue_class, queue_id), PAYLOAD_FIELD)
        except redis.RedisError as e:
            # The identifier is already gone from the wait list
            raise JobDecodeError(name, queue_id, f"failed to fetch payload: {e}") from e

        if raw is None:
            raise JobDecodeError(name, queue_id, "payload not found")

        return self._decode(name, queue_id, raw)

    def _decode(self, queue_name: str, queue_id: str, raw: str) -> Job:
        """Parse a JSON payload into a Job.

        Raises:
            JobDecodeError: invalid JSON or schema; ``job_id`` is filled in
                when the payload is valid JSON that still names the job
        """
        try:
            data = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise JobDecodeError(queue_name, queue_id, f"invalid JSON: {e}") from e

        if not isinstance(data, dict):
            raise JobDecodeError(queue_name, queue_id, "payload is not an object")

        # Status and output are owned by this worker, not by the producer
        fields = {k: v for k, v in data.items() if k not in WORKER_OWNED_FIELDS}
        try:
            return Job.model_validate(fields)
        except ValidationError as e:
            job_id = data.get("id") if isinstance(data.get("id"), str) and data.get("id") else None
            raise JobDecodeError(queue_name, queue_id, f"invalid payload: {e}", job_id=job_id) from e

    def push_job(self, queue_class: QueueClass, job: Job, queue_id: Optional[str] = None) -> str:
        """Enqueue a job the way the producer does.

        The payload hash is written before the identifier is appended so a
        worker never pops an identifier whose payload does not exist yet.

        Returns:
            The queue identifier (defaults to the job id)
        """
        queue_id = queue_id or job.job_id
        name = QueueClass(queue_class).value
        try:
            self.client.hset(
                self.job_key(queue_class, queue_id), PAYLOAD_FIELD, json.dumps(job.to_payload())
            )
            self.client.rpush(self.wait_key(queue_class), queue_id)
        except redis.RedisError as e:
            raise QueueError(name, f"failed to push job {queue_id}: {e}") from e
        self.logger.debug("Pushed job %s onto %s", queue_id, self.wait_key(queue_class))
        return queue_id

    def queue_length(self, queue_class: QueueClass) -> int:
        try:
            return int(self.client.llen(self.wait_key(queue_class)))
        except redis.RedisError as e:
            raise QueueError(QueueClass(queue_class).value, f"failed to read length: {e}") from e

    def ping(self) -> None:
        try:
            self.client.ping()
        except redis.RedisError as e:
            raise QueueError("redis", f"ping failed: {e}") from e

    def close(self) -> None:
        self.client.close()
        pool = getattr(self.client, "connection_pool", None)
        if pool is not None:
            pool.disconnect()
