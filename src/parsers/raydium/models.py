"""Tagged message variants for the Solana logsSubscribe websocket."""

from dataclasses import dataclass

from pydantic import BaseModel, ValidationError


class LogsValue(BaseModel):
    signature: str
    logs: list[str] = []
    err: dict | str | None = None

    model_config = {"extra": "ignore"}


class LogsResult(BaseModel):
    value: LogsValue

    model_config = {"extra": "ignore"}


class LogsParams(BaseModel):
    result: LogsResult
    subscription: int | None = None

    model_config = {"extra": "ignore"}


@dataclass(frozen=True)
class SubscriptionAck:
    subscription_id: int | str


@dataclass(frozen=True)
class RpcErrorEnvelope:
    code: int | None
    message: str


@dataclass(frozen=True)
class LogsNotification:
    signature: str
    logs: list[str]
    failed: bool


@dataclass(frozen=True)
class MalformedMessage:
    reason: str


StreamMessage = SubscriptionAck | RpcErrorEnvelope | LogsNotification | MalformedMessage


def classify_message(data: object) -> StreamMessage:
    """Map a decoded JSON payload onto exactly one message variant."""
    if not isinstance(data, dict):
        return MalformedMessage(reason=f"expected object, got {type(data).__name__}")

    if "error" in data:
        err = data["error"]
        if isinstance(err, dict):
            return RpcErrorEnvelope(code=err.get("code"), message=str(err.get("message", err)))
        return RpcErrorEnvelope(code=None, message=str(err))

    if "result" in data and "params" not in data:
        return SubscriptionAck(subscription_id=data["result"])

    if "params" in data:
        try:
            params = LogsParams.model_validate(data["params"])
        except ValidationError as e:
            return MalformedMessage(reason=f"invalid notification: {e.error_count()} errors")
        value = params.result.value
        return LogsNotification(
            signature=value.signature,
            logs=value.logs,
            failed=value.err is not None,
        )

    return MalformedMessage(reason="unrecognised envelope")
