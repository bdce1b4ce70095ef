# app/payouts/commands.py
from __future__ import annotations

from typing import Annotated, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from app.payouts.lifecycle import PayoutLifecycle
from app.payouts.model import PayoutRequest


class _Command(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


class InitiateTransfer(_Command):
    action: Literal["initiate"]


class SubmitOtp(_Command):
    action: Literal["submit_otp"]
    otp: str = Field(min_length=4, max_length=8, pattern=r"^\d+$")


class ResendOtp(_Command):
    action: Literal["resend_otp"]


class CheckStatus(_Command):
    action: Literal["check_status"]


class ManualComplete(_Command):
    action: Literal["manual_complete"]
    reference: str = Field(min_length=1, max_length=200)


class Retry(_Command):
    action: Literal["retry"]


class Cancel(_Command):
    action: Literal["cancel"]
    reason: Optional[str] = Field(default=None, max_length=500)


PayoutCommand = Annotated[
    Union[InitiateTransfer, SubmitOtp, ResendOtp, CheckStatus, ManualComplete, Retry, Cancel],
    Field(discriminator="action"),
]

command_adapter: TypeAdapter[PayoutCommand] = TypeAdapter(PayoutCommand)


def dispatch(
    lifecycle: PayoutLifecycle,
    payout_id: UUID,
    cmd: PayoutCommand,
    *,
    actor: Optional[str] = None,
) -> PayoutRequest:
    if isinstance(cmd, InitiateTransfer):
        return lifecycle.initiate_transfer(payout_id, actor=actor)
    if isinstance(cmd, SubmitOtp):
        return lifecycle.submit_otp(payout_id, cmd.otp, actor=actor)
    if isinstance(cmd, ResendOtp):
        return lifecycle.resend_otp(payout_id, actor=actor)
    if isinstance(cmd, CheckStatus):
        return lifecycle.check_status(payout_id, actor=actor)
    if isinstance(cmd, ManualComplete):
        return lifecycle.mark_manual_complete(payout_id, cmd.reference, actor=actor)
    if isinstance(cmd, Retry):
        return lifecycle.retry(payout_id, actor=actor)
    if isinstance(cmd, Cancel):
        return lifecycle.cancel(payout_id, reason=cmd.reason, actor=actor)
    raise TypeError(f"Unsupported payout command {type(cmd).__name__}")
