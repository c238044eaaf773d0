"""Kafka consumer loop for sms-store.

High-level flow, one message at a time:
    poll -> decode JSON -> SmsEvent -> SmsRecord -> insert into Mongo -> commit offset

Important Kafka concepts used here:

1) Consumer groups and offsets
- Kafka tracks the committed offset per partition per consumer group.
- On restart, a consumer with the same group.id resumes after the last
  committed offset, so anything not committed is delivered again.

2) Manual offset commit, after the insert
- `enable.auto.commit=False`; we commit a message only after its record was
  stored. Insert first, commit second: that ordering is what makes delivery
  at-least-once. A crash between the two means the message is stored again
  on redelivery, which is accepted (records are not deduplicated).
- When the insert fails we simply do not commit. Retrying is left to Kafka's
  redelivery of uncommitted offsets; there is no retry loop in here.

3) Undecodable messages
- A payload that is not valid JSON or does not match SmsEvent is logged and
  skipped WITHOUT committing. There is no dead-letter topic. If the group is
  restarted, the same bad message will be delivered again.

4) poll(timeout)
- A fetch waits up to 10 seconds, but in slices no longer than the stop
  grace period, so an idle consumer notices the stop flag quickly.
  `None` just means "nothing yet".
- The stop flag is checked once per iteration, so stopping is cooperative.
  `stop()` waits the grace period and then closes the consumer; a message
  that is still being stored at that point is not committed and will be
  delivered again after a restart.
"""

from __future__ import annotations

import json
import time
from enum import Enum
from threading import Event, Lock, Thread
from typing import Any

import structlog
from confluent_kafka import Consumer, KafkaError, KafkaException, Message
from pydantic import ValidationError

from . import config
from .errors import CommitFailure, DecodeError, StorageError
from .models import SmsEvent
from .mongo import SmsRepository

logger = structlog.get_logger(__name__)


class ConsumerState(str, Enum):
    RUNNING = "running"
    DRAINING = "draining"
    STOPPED = "stopped"


def create_consumer(
    brokers: str = config.KAFKA_BROKERS,
    group_id: str = config.KAFKA_GROUP_ID,
    auto_offset_reset: str = config.KAFKA_AUTO_OFFSET_RESET,
) -> Consumer:
    """Create and configure a Confluent Kafka Consumer.

    Non-obvious settings:

    - enable.auto.commit: off, offsets are committed by hand after the insert.
    - socket.timeout.ms: librdkafka has no per-call timeout for a synchronous
      commit; this bounds how long the commit request may wait for the broker.
    """
    conf: dict[str, Any] = {
        "bootstrap.servers": brokers,
        "group.id": group_id,
        "auto.offset.reset": auto_offset_reset,
        "enable.auto.commit": False,
        "enable.partition.eof": False,
        "socket.timeout.ms": int(config.COMMIT_TIMEOUT * 1000),
    }
    return Consumer(conf)


def decode_event(value: bytes | None) -> SmsEvent:
    """Decode a raw Kafka message value into an SmsEvent.

    Raises:
        DecodeError: empty value, bad UTF-8, bad JSON or wrong schema.
    """
    if value is None:
        raise DecodeError("message has no value")

    try:
        data = json.loads(value.decode("utf-8"))
        return SmsEvent.model_validate(data)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise DecodeError(f"invalid JSON payload: {e}") from e
    except ValidationError as e:
        raise DecodeError(f"invalid event schema: {e}") from e


class SmsConsumer:
    """Consumes SMS events from one topic and stores them through SmsRepository."""

    def __init__(
        self,
        repository: SmsRepository,
        consumer: Consumer | None = None,
        topic: str = config.KAFKA_TOPIC,
        stop_event: Event | None = None,
        fetch_timeout: float = config.FETCH_TIMEOUT,
        fetch_backoff: float = config.FETCH_BACKOFF,
        grace_period: float = config.STOP_GRACE_PERIOD,
    ):
        self.repository = repository
        self.consumer = consumer if consumer is not None else create_consumer()
        self.topic = topic
        self.stop_event = stop_event or Event()
        self.fetch_timeout = fetch_timeout
        self.fetch_backoff = fetch_backoff
        self.grace_period = grace_period

        self.state = ConsumerState.STOPPED
        self._thread: Thread | None = None
        self._closed = False
        # Guards state and _closed; stop() and the loop thread both change them.
        self._lock = Lock()

        self.stats = {
            "consumed": 0,
            "stored": 0,
            "decode_errors": 0,
            "insert_errors": 0,
            "commit_errors": 0,
            "fetch_errors": 0,
        }

    def start(self) -> None:
        """Check the brokers are reachable, then run the loop in a daemon thread.

        Raises:
            KafkaException: the cluster metadata could not be fetched. This is
                fatal at startup.
        """
        logger.info("Starting Kafka consumer", topic=self.topic)
        self.consumer.list_topics(self.topic, timeout=config.FETCH_TIMEOUT)

        with self._lock:
            self.state = ConsumerState.RUNNING
        self._thread = Thread(target=self.run, name="sms-consumer", daemon=True)
        self._thread.start()

    def run(self) -> None:
        """Run the consumer loop until `stop_event` is set.

        Each iteration is wrapped so an unexpected exception is logged and the
        loop goes on with the next message. The Kafka consumer is closed when
        the loop exits.
        """
        with self._lock:
            if self.stop_event.is_set():
                return
            self.state = ConsumerState.RUNNING

        try:
            self.consumer.subscribe([self.topic])
            logger.info("Consumer loop started", topic=self.topic)

            while not self.stop_event.is_set():
                try:
                    msg = self._fetch()
                    if msg is not None:
                        self.process_message(msg)
                except Exception:
                    logger.exception("Unexpected error in consumer loop")
        finally:
            with self._lock:
                if self.state is ConsumerState.RUNNING:
                    self.state = ConsumerState.DRAINING
            self._release()
            logger.info("Consumer loop exited", **self.stats)

    def _fetch(self) -> Message | None:
        """Poll for one message. Returns None on timeout or after a fetch error.

        The fetch timeout is spent in slices of at most the grace period, with
        the stop flag checked between slices.
        """
        deadline = time.monotonic() + self.fetch_timeout
        msg = None
        try:
            while msg is None and not self.stop_event.is_set():
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return None
                msg = self.consumer.poll(min(remaining, self.grace_period))
        except KafkaException as e:
            self._fetch_failed(e.args[0] if e.args else e)
            return None
        except RuntimeError:
            # stop() closed the consumer under us
            if self.stop_event.is_set():
                return None
            raise

        if msg is None:
            return None

        err = msg.error()
        if err is not None:
            if err.code() == KafkaError._PARTITION_EOF:
                return None
            self._fetch_failed(err)
            return None

        return msg

    def _fetch_failed(self, error: Any) -> None:
        self.stats["fetch_errors"] += 1
        logger.error("Error fetching message", error=str(error), backoff=self.fetch_backoff)
        # Interruptible sleep: stop() does not wait out the backoff.
        self.stop_event.wait(self.fetch_backoff)

    def process_message(self, msg: Message) -> bool:
        """Decode, store and commit one message.

        Returns True when the record was stored (whether or not the commit
        succeeded), False when the message was left uncommitted.
        """
        self.stats["consumed"] += 1
        partition, offset = msg.partition(), msg.offset()

        try:
            event = decode_event(msg.value())
        except DecodeError as e:
            self.stats["decode_errors"] += 1
            logger.error(
                "Skipping undecodable message",
                partition=partition,
                offset=offset,
                error=str(e),
            )
            return False

        record = event.to_record()

        try:
            storage_id = self.repository.insert(record)
        except StorageError as e:
            self.stats["insert_errors"] += 1
            logger.error(
                "Failed to store message, offset not committed",
                partition=partition,
                offset=offset,
                event_id=event.eventId,
                error=str(e),
            )
            return False

        self.stats["stored"] += 1
        logger.info(
            "Stored message",
            partition=partition,
            offset=offset,
            event_id=event.eventId,
            user_id=record.user_id,
            id=storage_id,
        )

        try:
            self._commit(msg)
        except CommitFailure as e:
            # The record is stored; the worst case is a duplicate on redelivery.
            self.stats["commit_errors"] += 1
            logger.error("Offset commit failed", partition=partition, offset=offset, error=str(e))

        return True

    def _commit(self, msg: Message) -> None:
        try:
            self.consumer.commit(message=msg, asynchronous=False)
        except KafkaException as e:
            raise CommitFailure(str(e.args[0] if e.args else e)) from e
        except RuntimeError as e:
            # Consumer already closed by stop()
            raise CommitFailure(str(e)) from e

    def stop(self) -> None:
        """Signal the loop, wait the grace period, then release the subscription.

        Stopping is cooperative: the loop finishes its current iteration. If
        that iteration is still running when the grace period ends, the Kafka
        consumer is closed anyway. The in-flight message then stays
        uncommitted and is delivered again after a restart.
        """
        logger.info("Stopping Kafka consumer")
        self.stop_event.set()
        with self._lock:
            if self.state is ConsumerState.RUNNING:
                self.state = ConsumerState.DRAINING

        if self._thread is not None:
            self._thread.join(self.grace_period)
            if self._thread.is_alive():
                logger.warning(
                    "Grace period over, closing consumer with a call in flight",
                    grace_period=self.grace_period,
                )
        elif self.state is not ConsumerState.STOPPED:
            # run() is executing inline on another caller's stack; its finally
            # block releases the consumer.
            return

        self._release()

    def _release(self) -> None:
        with self._lock:
            if not self._closed:
                self._closed = True
                try:
                    self.consumer.close()
                except (KafkaException, RuntimeError) as e:
                    logger.error("Failed to close Kafka consumer", error=str(e))
                else:
                    logger.info("Kafka consumer closed")
            self.state = ConsumerState.STOPPED

    def health_check(self) -> None:
        """Raise RuntimeError unless the loop is running."""
        if self.consumer is None:
            raise RuntimeError("Kafka consumer is not initialized")
        if self.state is not ConsumerState.RUNNING:
            raise RuntimeError(f"Kafka consumer is {self.state.value}")
        if self._thread is not None and not self._thread.is_alive():
            raise RuntimeError("Kafka consumer thread has exited")
