"""SQS queue adapter."""

from __future__ import annotations

from typing import Any

import structlog

from convreport.ports import QueueMessage

logger = structlog.get_logger()


class SqsQueue:
    """Receive/delete against one queue URL. Owns one boto3 client for the process lifetime."""

    def __init__(
        self,
        queue_url: str,
        client: Any = None,
        *,
        region_name: str | None = None,
        max_messages: int = 5,
        wait_time_seconds: int = 10,
    ):
        if not queue_url:
            raise ValueError("queue_url is required")
        if client is None:
            import boto3

            client = boto3.client("sqs", region_name=region_name)
        self.queue_url = queue_url
        self._client = client
        self._max_messages = max(1, min(max_messages, 10))
        self._wait_time_seconds = wait_time_seconds

    def receive(self) -> list[QueueMessage]:
        response = self._client.receive_message(
            QueueUrl=self.queue_url,
            MaxNumberOfMessages=self._max_messages,
            WaitTimeSeconds=self._wait_time_seconds,
        )
        return [
            QueueMessage(
                message_id=message.get("MessageId", ""),
                receipt_handle=message["ReceiptHandle"],
                body=message.get("Body", ""),
            )
            for message in response.get("Messages", [])
        ]

    def delete(self, receipt_handle: str) -> None:
        self._client.delete_message(QueueUrl=self.queue_url, ReceiptHandle=receipt_handle)
        logger.debug("Queue message deleted")
