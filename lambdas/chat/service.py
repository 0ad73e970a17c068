"""Chat service: governance checks around every model call."""

from typing import Protocol

from aws_lambda_powertools import Logger

from chat.governor import ConversationGovernor
from chat.models import (
    ChatResponse,
    ModelResponse,
    QuotaReport,
    RemediationResponse,
    UsageDay,
    UsageHistoryResponse,
    UsageReport,
    UsageStats,
    UsageStatsResponse,
)
from chat.prompts import (
    SUMMARY_MAX_TOKENS,
    build_history_messages,
    build_summary_messages,
    build_system_prompt,
)
from chat.sanitizer import sanitize_input, sanitize_output
from shared.budget_ledger import AlertNotifier, BudgetLedger
from shared.config import Config
from shared.content_gate import ContentGate
from shared.conversations import ConversationStore, generate_title
from shared.cost_estimator import CostEstimator
from shared.db import DynamoDBClient
from shared.exceptions import (
    BudgetExhaustedError,
    ContentBlockedError,
    GatewayError,
    ModelCallError,
    RateLimitExceededError,
    TokenQuotaExceededError,
    ValidationError,
)
from shared.models import Conversation, DailyTokenUsage, RequestIdentity, Turn
from shared.rate_limiter import RateLimiter
from shared.tiers import get_tier_limits
from shared.token_quota import USAGE_RETENTION_DAYS, TokenQuotaEnforcer

logger = Logger(child=True)


class ModelClient(Protocol):
    """Protocol for model client interface (Claude or Bedrock)."""

    def send_messages(
        self,
        system_prompt: str,
        messages: list[dict[str, str]],
        max_tokens: int,
    ) -> ModelResponse:
        """Send a conversation and return the reply with usage stats."""
        ...


class ChatService:
    """Runs a chat request through every governance check, then the model."""

    def __init__(
        self,
        db: DynamoDBClient,
        config: Config,
        model_client: ModelClient | None = None,
        rate_limiter: RateLimiter | None = None,
        content_gate: ContentGate | None = None,
        notifier: AlertNotifier | None = None,
    ):
        """Initialize chat service.

        Args:
            db: DynamoDB client for counters, ledger and conversations
            config: Application configuration
            model_client: Optional pre-configured model client (for testing)
            rate_limiter: Optional pre-configured rate limiter (for testing)
            content_gate: Optional gate with a custom signature list
            notifier: Optional budget alert sink
        """
        settings = config.governance
        self.config = config
        self.settings = settings
        self._model_client = model_client

        self.estimator = CostEstimator.for_model(config.model_id)
        self.rate_limiter = rate_limiter or RateLimiter(
            db, tier_limits=settings.tier_limits, address_limits=settings.address_limits
        )
        self.content_gate = content_gate or ContentGate()
        self.quota = TokenQuotaEnforcer(db, tier_limits=settings.tier_limits)
        self.ledger = BudgetLedger(
            db,
            daily_cap=settings.daily_budget_cap_minor_units,
            thresholds=settings.alert_threshold_percentages,
            notifier=notifier or AlertNotifier(settings.budget_alert_topic_arn),
        )
        self.store = ConversationStore(db)
        self.governor = ConversationGovernor(self.store, settings.conversation_token_ceiling)

    def _get_model_client(self) -> ModelClient:
        """Lazy initialization of the model client based on MODEL_PROVIDER."""
        if self._model_client is None:
            if self.config.model_provider == "bedrock":
                from chat.bedrock_client import BedrockClient

                self._model_client = BedrockClient(self.config.model_id)
                logger.info("Using Bedrock", extra={"model": self.config.model_id})
            else:
                from chat.claude_client import ClaudeClient
                from shared.secrets import get_anthropic_api_key

                self._model_client = ClaudeClient(get_anthropic_api_key(), self.config.model_id)
                logger.info("Using Claude via Anthropic API", extra={"model": self.config.model_id})
        return self._model_client

    def _check_rate_limit(self, identity: RequestIdentity) -> None:
        decision = self.rate_limiter.check(identity)
        if not decision.allowed:
            raise RateLimitExceededError(
                decision.retry_after_seconds,
                decision.violated.max_count,
                decision.violated.window.value,
            )

    def _reserve(
        self,
        identity: RequestIdentity,
        prompt_chars: int,
        output_ceiling: int,
    ) -> None:
        """Run the pre-flight quota check and the budget reservation.

        The quota check is read-only, so it runs first; the reservation
        consumes budget and only happens once every other check passed.
        """
        estimated_tokens = self.estimator.estimate_tokens(prompt_chars, output_ceiling)
        quota = self.quota.reserve(identity, estimated_tokens)
        if not quota.allowed:
            raise TokenQuotaExceededError(quota.used, quota.limit)

        estimated_cost = self.estimator.estimate(prompt_chars, output_ceiling)
        budget = self.ledger.check_and_reserve(estimated_cost)
        if not budget.allowed:
            raise BudgetExhaustedError(budget.percent_used, budget.breaker_open)

    def _call_model(
        self,
        identity: RequestIdentity,
        system_prompt: str,
        messages: list[dict[str, str]],
        max_tokens: int,
        conversation: Conversation | None = None,
    ) -> ModelResponse:
        """Call the model; on failure commit only partially reported usage."""
        try:
            return self._get_model_client().send_messages(system_prompt, messages, max_tokens)
        except ModelCallError as e:
            logger.error(
                "Model call failed",
                extra={
                    "subject_id": identity.subject_id,
                    "network_address": identity.network_address,
                    "error": e.message,
                    "partial_input_tokens": e.input_tokens,
                    "partial_output_tokens": e.output_tokens,
                },
            )
            if e.has_partial_usage:
                self._record_usage(
                    identity, e.input_tokens, e.output_tokens, conversation, succeeded=False
                )
            else:
                self._record_failure(identity)
            raise

    def _record_failure(self, identity: RequestIdentity) -> None:
        try:
            self.quota.record_failure(identity)
        except GatewayError as e:
            logger.error(
                "Failed to record failed request",
                extra={"error": e.message, "subject_id": identity.subject_id},
            )

    def _record_usage(
        self,
        identity: RequestIdentity,
        input_tokens: int,
        output_tokens: int,
        conversation: Conversation | None = None,
        succeeded: bool = True,
    ) -> DailyTokenUsage | None:
        """Commit actual usage to the quota, the ledger and the conversation.

        Each commit is attempted independently. A failed commit is logged
        and does not fail a request whose model call already completed.

        Returns:
            Subject's usage after the commit, or None if unavailable
        """
        tokens = input_tokens + output_tokens
        usage: DailyTokenUsage | None = None

        try:
            usage = self.quota.commit(identity, input_tokens, output_tokens, succeeded=succeeded)
        except GatewayError as e:
            logger.error(
                "Failed to record token usage",
                extra={"error": e.message, "subject_id": identity.subject_id},
            )

        try:
            self.ledger.commit(
                self.estimator.actual_cost(input_tokens, output_tokens),
                tokens,
                identity.subject_id,
            )
        except GatewayError as e:
            logger.error(
                "Failed to record spend",
                extra={"error": e.message, "subject_id": identity.subject_id},
            )

        if conversation is not None:
            try:
                self.governor.record_tokens(conversation, tokens)
            except GatewayError as e:
                logger.error(
                    "Failed to record conversation tokens",
                    extra={"error": e.message, "conversation_id": conversation.conversation_id},
                )

        return usage

    def _start_conversation(
        self, identity: RequestIdentity, message: str
    ) -> Conversation | None:
        """Create the conversation for a first message once its reply exists."""
        try:
            return self.store.create(identity.subject_id, title=generate_title(message))
        except GatewayError as e:
            logger.error(
                "Failed to create conversation",
                extra={"error": e.message, "subject_id": identity.subject_id},
            )
            return None

    def send_message(
        self,
        identity: RequestIdentity,
        message: str,
        conversation_id: str | None = None,
    ) -> ChatResponse:
        """Process one chat message.

        Args:
            identity: Resolved request identity
            message: User message, already trimmed and length-checked
            conversation_id: Conversation to continue, if any

        Returns:
            ChatResponse with the reply, usage and quota position

        Raises:
            ValidationError: If an anonymous request names a conversation
            RateLimitExceededError: If any rate-limit window is exceeded
            ContentBlockedError: If the message matches a gate signature
            NotFoundError: If the conversation does not exist
            ConversationStateError: If the conversation is archived
            ConversationLimitReachedError: If the conversation is at its ceiling
            TokenQuotaExceededError: If the daily token quota would be exceeded
            BudgetExhaustedError: If the global daily budget is exhausted
            StoreUnavailableError: If a governance store cannot be reached
            ModelCallError: If the model call fails
        """
        if identity.is_anonymous and conversation_id:
            raise ValidationError(
                "Sign in to continue a conversation", field="conversation_id"
            )

        self._check_rate_limit(identity)

        gate = self.content_gate.classify(message)
        if gate.blocked:
            logger.warning(
                "Message blocked by content gate",
                extra={
                    "subject_id": identity.subject_id,
                    "network_address": identity.network_address,
                    "reason": gate.reason,
                    "message_length": len(message),
                },
            )
            raise ContentBlockedError(gate.reason or "unknown")

        conversation: Conversation | None = None
        history: list[dict[str, str]] = []
        if conversation_id:
            conversation = self.governor.require_accepting(identity.subject_id, conversation_id)
            history = build_history_messages(self.store.list_turns(conversation_id))

        limits = get_tier_limits(identity.tier, self.settings.tier_limits)
        user_text = sanitize_input(message)
        system_prompt = build_system_prompt(conversation.summary_context if conversation else None)
        messages = [*history, {"role": "user", "content": user_text}]
        prompt_chars = sum(len(m["content"]) for m in messages)

        self._reserve(identity, prompt_chars, limits.max_output_tokens)

        response = self._call_model(
            identity, system_prompt, messages, limits.max_output_tokens, conversation
        )
        reply = sanitize_output(response.text)

        if conversation is None and not identity.is_anonymous:
            conversation = self._start_conversation(identity, message)

        usage = self._record_usage(
            identity, response.input_tokens, response.output_tokens, conversation
        )

        if conversation is not None:
            try:
                self.store.append_turn(
                    Turn(
                        conversation_id=conversation.conversation_id,
                        user_text=user_text,
                        assistant_text=reply,
                        input_tokens=response.input_tokens,
                        output_tokens=response.output_tokens,
                    )
                )
            except GatewayError as e:
                logger.error(
                    "Failed to store turn",
                    extra={"error": e.message, "conversation_id": conversation.conversation_id},
                )

        logger.info(
            "Chat message processed",
            extra={
                "subject_id": identity.subject_id,
                "tier": identity.tier.value,
                "conversation_id": conversation.conversation_id if conversation else None,
                "input_tokens": response.input_tokens,
                "output_tokens": response.output_tokens,
            },
        )

        quota = None
        if usage is not None:
            quota = QuotaReport(
                tokens_used_today=usage.tokens_used,
                daily_token_limit=limits.daily_token_limit,
            )

        return ChatResponse(
            response=reply,
            conversation_id=conversation.conversation_id if conversation else None,
            usage=UsageReport(
                input_tokens=response.input_tokens,
                output_tokens=response.output_tokens,
            ),
            quota=quota,
        )

    def summarize_and_continue(
        self,
        identity: RequestIdentity,
        conversation_id: str,
    ) -> RemediationResponse:
        """Continue a conversation under a new id, seeded with a summary.

        The summary is a real model call and goes through the rate limiter,
        the token quota and the budget like any other. Its tokens count
        against the subject and the ledger but not against either
        conversation.

        Raises:
            ValidationError: If anonymous, or the conversation has no turns
            NotFoundError: If the conversation does not exist
            ConversationStateError: If the conversation is already archived
            RateLimitExceededError, TokenQuotaExceededError, BudgetExhaustedError:
                If the summarization call is not allowed
            ModelCallError: If the summarization call fails
        """
        if identity.is_anonymous:
            raise ValidationError("Sign in to continue a conversation")

        self._check_rate_limit(identity)

        def summarize(conversation: Conversation, turns: list[Turn]) -> str:
            messages = build_summary_messages(turns)
            system_prompt = build_system_prompt(conversation.summary_context)
            prompt_chars = sum(len(m["content"]) for m in messages)

            self._reserve(identity, prompt_chars, SUMMARY_MAX_TOKENS)
            response = self._call_model(identity, system_prompt, messages, SUMMARY_MAX_TOKENS)
            self._record_usage(identity, response.input_tokens, response.output_tokens)
            return sanitize_output(response.text).strip()

        result = self.governor.remediate(identity.subject_id, conversation_id, summarize)

        return RemediationResponse(
            new_conversation_id=result.new_conversation.conversation_id,
            summary=result.summary,
            continued_from=conversation_id,
        )

    def get_usage_history(
        self, identity: RequestIdentity, days: int = 30
    ) -> UsageHistoryResponse:
        """Get the subject's daily usage, newest first."""
        rows = self.quota.get_history(identity.subject_id, days=days)
        return UsageHistoryResponse(
            history=[
                UsageDay(
                    date=row.date,
                    tokens_used=row.tokens_used,
                    requests=row.total_requests,
                    failed_requests=row.failed_count,
                )
                for row in rows
            ]
        )

    def get_usage_stats(self, identity: RequestIdentity) -> UsageStatsResponse:
        """Get today's request count and the recent success rate.

        The success rate covers the usage rows still retained, and is 0 when
        the subject has made no requests.
        """
        limits = get_tier_limits(identity.tier, self.settings.tier_limits)
        today = self.quota.get_usage(identity.subject_id)
        rows = self.quota.get_history(identity.subject_id, days=USAGE_RETENTION_DAYS)

        total = sum(row.total_requests for row in rows)
        succeeded = sum(row.request_count for row in rows)
        success_rate = (succeeded / total) * 100 if total else 0.0

        return UsageStatsResponse(
            stats=UsageStats(
                today_requests=today.total_requests,
                tokens_used_today=today.tokens_used,
                daily_token_limit=limits.daily_token_limit,
                success_rate=f"{success_rate:.2f}",
                tier=identity.tier.value,
            )
        )
