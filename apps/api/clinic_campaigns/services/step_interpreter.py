"""Executes one workflow step for one recipient."""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from clinic_campaigns.db.enums import MessageChannel
from clinic_campaigns.schemas.campaign import (
    BranchStep,
    ConditionStep,
    SendStep,
    StepDefinition,
    WaitStep,
)
from clinic_campaigns.services.campaign_conditions import evaluate_predicate
from clinic_campaigns.services.campaign_context import (
    ExecutionContext,
    StepOutcome,
    StepResult,
)
from clinic_campaigns.services.message_sender import MessageSender, OutboundMessage
from clinic_campaigns.services.recipient_directory import RecipientDirectory, RecipientProfile
from clinic_campaigns.services.template_rendering import render_channel_content

logger = logging.getLogger(__name__)

_CHANNEL_LABELS = {
    MessageChannel.SMS: "phone number",
    MessageChannel.EMAIL: "email",
    MessageChannel.PUSH: "push token",
    MessageChannel.IN_APP: "portal account",
}


class StepInterpreter:
    """
    Step dispatch over the closed set of step kinds.

    Never raises for configuration or recipient-data problems; those come
    back as SKIPPED results with a readable reason.
    """

    def __init__(self, directory: RecipientDirectory, sender: MessageSender):
        self.directory = directory
        self.sender = sender

    async def execute(
        self,
        db: Session,
        step: StepDefinition,
        context: ExecutionContext,
        recipient: RecipientProfile,
    ) -> StepResult:
        match step:
            case SendStep():
                return await self._execute_send(db, step, context, recipient)
            case ConditionStep():
                return self._execute_condition(step, context)
            case BranchStep():
                return self._execute_branch(step, context)
            case WaitStep():
                # Resolved at scheduling time; pass straight through.
                return StepResult.advance(step.next_step_id)
        raise TypeError(f"Unsupported step definition: {type(step).__name__}")

    async def _execute_send(
        self,
        db: Session,
        step: SendStep,
        context: ExecutionContext,
        recipient: RecipientProfile,
    ) -> StepResult:
        if not step.channel:
            return StepResult.skipped("No channel configured")
        try:
            channel = MessageChannel(step.channel.strip().lower())
        except ValueError:
            return StepResult.skipped(f"Invalid channel '{step.channel}'")

        if not step.template_id:
            return StepResult.skipped("No template configured")
        template = self.directory.get_template(db, context.tenant_id, step.template_id)
        if template is None:
            return StepResult.skipped(f"Template {step.template_id} not found")

        address = recipient.contact_for(channel)
        if not address:
            return StepResult.skipped(f"Patient has no {_CHANNEL_LABELS[channel]}")

        content = render_channel_content(template, channel, context.variables)
        if content.is_empty:
            return StepResult.skipped(f"Template has no content for {channel.value}")

        message = OutboundMessage(
            tenant_id=context.tenant_id,
            recipient_id=recipient.id,
            channel=channel,
            address=address,
            content=content,
            correlation_id=context.correlation_id,
        )
        try:
            outcome = await self.sender.send(message)
        except Exception as e:
            logger.exception(
                "Message sender raised for action %s",
                context.correlation_id,
            )
            return StepResult(
                outcome=StepOutcome.FAILED,
                error_code="SENDER_ERROR",
                error_message=str(e) or type(e).__name__,
            )

        if outcome.success:
            return StepResult(
                outcome=StepOutcome.SENT,
                advance_to=step.next_step_id,
                dispatched=True,
                external_message_id=outcome.external_id,
            )
        return StepResult(
            outcome=StepOutcome.FAILED,
            error_code=outcome.error_code,
            error_message=outcome.error_message,
        )

    def _execute_condition(self, step: ConditionStep, context: ExecutionContext) -> StepResult:
        if step.condition is None:
            return StepResult.advance(step.next_step_id)
        if evaluate_predicate(step.condition, context.variables):
            return StepResult.advance(step.next_step_id)
        # Recipient drops out of the funnel; not a failure.
        return StepResult.skipped("Condition not met")

    def _execute_branch(self, step: BranchStep, context: ExecutionContext) -> StepResult:
        for branch in step.branches:
            if evaluate_predicate(branch.condition, context.variables):
                return StepResult.advance(branch.next_step_id)
        return StepResult.advance(step.next_step_id)
