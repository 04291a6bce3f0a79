"""AI assistant boundary."""

from budgee.agents.assistant import (
    AccountSummary,
    AssistantUnavailableError,
    ChatHistory,
    ChatMessage,
    FinanceAssistant,
    FinanceAssistantInterface,
    FinancialContext,
    GeminiFinanceAssistant,
    TransactionSummary,
    build_financial_context,
)

__all__ = [
    "AccountSummary",
    "AssistantUnavailableError",
    "ChatHistory",
    "ChatMessage",
    "FinanceAssistant",
    "FinanceAssistantInterface",
    "FinancialContext",
    "GeminiFinanceAssistant",
    "TransactionSummary",
    "build_financial_context",
]
