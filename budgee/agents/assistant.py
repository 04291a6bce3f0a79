"""
Finance Assistant Boundary

The AI chat assistant is an external collaborator. This module defines
what the core hands it and what comes back:

    question + FinancialContext  ->  FinanceAssistantInterface.ask  ->  answer

CRITICAL BOUNDARIES:
- The assistant only ever sees a read-only FinancialContext snapshot
  (totals, active accounts, the most recent transactions, category totals)
- It NEVER mutates the ledger
- The raw financial data is reference material for the model; it is not
  meant to be echoed back to the user

GeminiFinanceAssistant is the production implementation (Google
Generative AI). Tests plug in any other FinanceAssistantInterface.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

import google.generativeai as genai
import structlog
from pydantic import BaseModel, Field

from budgee.config import AssistantSettings, get_settings
from budgee.events import CHAT_HISTORY_CLEARED, ChangeNotificationBus
from budgee.exceptions import BudgeeError, ValidationError
from budgee.models.ledger import ZERO, utc_now
from budgee.models.validation import ValidationIssue
from budgee.orchestrator import FinanceSession

logger = structlog.get_logger(__name__)


class AssistantUnavailableError(BudgeeError):
    """The assistant backend is not configured or failed to answer."""
    pass


# =============================================================================
# CONTEXT SNAPSHOT
# =============================================================================

class AccountSummary(BaseModel):
    name: str
    type: str
    balance: Decimal
    last_four: str = ""


class TransactionSummary(BaseModel):
    date: str
    description: str
    amount: Decimal
    category: str


class FinancialContext(BaseModel):
    """Read-only snapshot of a user's finances handed to the assistant."""

    total_income: Decimal = ZERO
    total_expenses: Decimal = ZERO
    savings: Decimal = ZERO
    is_available: bool = True
    accounts: list[AccountSummary] = Field(default_factory=list)
    recent_transactions: list[TransactionSummary] = Field(default_factory=list)
    category_totals: dict[str, Decimal] = Field(default_factory=dict)

    def to_prompt_text(self) -> str:
        """Plain-text rendering used inside the model prompt."""
        if not self.is_available:
            return "Financial data is currently unavailable."

        lines = [
            f"Total income: {self.total_income:,.2f}",
            f"Total expenses: {self.total_expenses:,.2f}",
            f"Savings: {self.savings:,.2f}",
            "",
            "Accounts:",
        ]
        lines += [
            f"- {a.name} ({a.type}, ****{a.last_four}): {a.balance:,.2f}" if a.last_four
            else f"- {a.name} ({a.type}): {a.balance:,.2f}"
            for a in self.accounts
        ] or ["- none"]

        lines += ["", "Recent transactions:"]
        lines += [
            f"- {t.date} {t.description} [{t.category}]: {t.amount:,.2f}"
            for t in self.recent_transactions
        ] or ["- none"]

        lines += ["", "Totals by category:"]
        lines += [
            f"- {category}: {total:,.2f}"
            for category, total in sorted(self.category_totals.items())
        ] or ["- none"]
        return "\n".join(lines)


def build_financial_context(session: FinanceSession, recent_limit: int = 10) -> FinancialContext:
    """Snapshot the session's derived views for the assistant."""
    totals = session.totals()
    if not totals.is_available:
        return FinancialContext(is_available=False)

    accounts = [
        AccountSummary(
            name=account.name,
            type=account.type.value,
            balance=account.balance,
            last_four=account.last_four or "",
        )
        for account in session.get_accounts(include_inactive=False)
    ]
    recent = [
        TransactionSummary(
            date=transaction.date.isoformat(),
            description=transaction.description,
            amount=transaction.amount,
            category=transaction.category.value,
        )
        for transaction in session.get_transactions()[:recent_limit]
    ]
    return FinancialContext(
        total_income=totals.total_income,
        total_expenses=totals.total_expenses,
        savings=totals.savings,
        accounts=accounts,
        recent_transactions=recent,
        category_totals=session.category_totals(),
    )


# =============================================================================
# ASSISTANT BACKENDS
# =============================================================================

class FinanceAssistantInterface(ABC):
    """Anything that can answer a finance question from a context snapshot."""

    @abstractmethod
    def ask(self, question: str, context: FinancialContext) -> str:
        """
        Answer question using only context.

        Raises:
            AssistantUnavailableError: If the backend cannot answer
        """
        pass


ASSISTANT_PROMPT = """You are Budgee, a friendly and supportive financial buddy. Talk to the user like a close friend who is good with money: warm, encouraging and genuinely helpful.

IMPORTANT: The financial data below is FOR YOUR REFERENCE ONLY. Do not repeat it verbatim. Use it to understand the user's situation and answer their question naturally.
If the data does not contain what is needed, say so instead of guessing.

Financial Data (REFERENCE ONLY):
{context}

User Question: {question}"""


class GeminiFinanceAssistant(FinanceAssistantInterface):
    """FinanceAssistantInterface backed by Google Generative AI."""

    def __init__(
        self,
        settings: Optional[AssistantSettings] = None,
        model: Optional[Any] = None,
    ):
        self._settings = settings or get_settings().assistant
        self._model = model or self._configure_genai()

    def _configure_genai(self):
        if not self._settings.api_key:
            raise AssistantUnavailableError(
                "AI assistant is not configured. Set GEMINI_API_KEY to enable it."
            )
        genai.configure(api_key=self._settings.api_key)
        return genai.GenerativeModel(
            model_name=self._settings.model_name,
            generation_config={
                "temperature": self._settings.temperature,
                "max_output_tokens": self._settings.max_tokens,
            },
        )

    def ask(self, question: str, context: FinancialContext) -> str:
        prompt = ASSISTANT_PROMPT.format(context=context.to_prompt_text(), question=question)
        try:
            response = self._model.generate_content(prompt)
            answer = (response.text or "").strip()
        except Exception as e:
            logger.error("assistant_request_failed", error=str(e))
            raise AssistantUnavailableError(f"Assistant request failed: {e}") from e

        if not answer:
            raise AssistantUnavailableError("Assistant returned an empty answer")
        return answer


# =============================================================================
# CHAT HISTORY AND FACADE
# =============================================================================

class ChatMessage(BaseModel):
    question: str
    answer: str
    asked_at: datetime = Field(default_factory=utc_now)


class ChatHistory:
    """In-session question/answer log per user, capped at max_messages."""

    def __init__(self, bus: Optional[ChangeNotificationBus] = None, max_messages: int = 50):
        self._bus = bus
        self._max = max_messages
        self._messages: dict[str, list[ChatMessage]] = {}

    def add(self, user_id: str, question: str, answer: str) -> ChatMessage:
        message = ChatMessage(question=question, answer=answer)
        messages = self._messages.setdefault(user_id, [])
        messages.append(message)
        del messages[:-self._max]
        return message

    def get(self, user_id: str) -> list[ChatMessage]:
        return list(self._messages.get(user_id, []))

    def clear(self, user_id: str) -> None:
        """Forget the user's conversation and announce it on the bus."""
        self._messages.pop(user_id, None)
        if self._bus is not None:
            self._bus.publish(CHAT_HISTORY_CLEARED)


class FinanceAssistant:
    """Validates the question, snapshots the ledger and records the exchange."""

    def __init__(
        self,
        session: FinanceSession,
        backend: FinanceAssistantInterface,
        history: Optional[ChatHistory] = None,
        recent_limit: Optional[int] = None,
    ):
        self._session = session
        self._backend = backend
        self.history = history or ChatHistory(session.bus)
        self._recent_limit = recent_limit or get_settings().assistant.recent_transactions

    def ask(self, question: str) -> str:
        """
        Raises:
            ValidationError: If question is empty
            AssistantUnavailableError: If the backend cannot answer
        """
        question = (question or "").strip()
        if not question:
            raise ValidationError(
                "Question is required",
                issues=[ValidationIssue(
                    field="question",
                    issue_type="missing",
                    message="Question is required",
                    severity="error",
                )],
            )

        context = build_financial_context(self._session, self._recent_limit)
        logger.info(
            "assistant_question",
            user_id=self._session.user_id,
            transactions_in_context=len(context.recent_transactions),
        )
        answer = self._backend.ask(question, context)
        self.history.add(self._session.user_id, question, answer)
        return answer

    def clear_history(self) -> None:
        self.history.clear(self._session.user_id)
