"""
Referral Program Exceptions

Every error raised by the referral services derives from ReferralProgramError
and carries a stable error code, an HTTP status and structured details that
the API layer renders as an ErrorResponse.
"""

from typing import Any, Dict, List, Optional


class ReferralProgramError(Exception):
    """Base exception for the referral program"""

    error_code = "REFERRAL_PROGRAM_ERROR"
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
        }

    def __str__(self) -> str:
        return f"{self.error_code}: {self.message}"


class CodeGenerationExhausted(ReferralProgramError):
    """Every generated code collided with an existing one"""

    error_code = "CODE_GENERATION_EXHAUSTED"
    status_code = 500

    def __init__(self, attempts: int):
        super().__init__(
            f"Unable to generate a unique referral code after {attempts} attempts",
            {"attempts": attempts},
        )


class RewardNotFound(ReferralProgramError):
    error_code = "REWARD_NOT_FOUND"
    status_code = 404

    def __init__(self, reward_id: str):
        super().__init__("Reward not found", {"reward_id": reward_id})


class ReferrerNotFound(ReferralProgramError):
    error_code = "REFERRER_NOT_FOUND"
    status_code = 404

    def __init__(self, referrer_id: str):
        super().__init__("Referrer not found", {"referrer_id": referrer_id})


class CodeNotFound(ReferralProgramError):
    error_code = "CODE_NOT_FOUND"
    status_code = 404

    def __init__(self, code_id: str):
        super().__init__("Referral code not found", {"code_id": code_id})


class InvalidRewardState(ReferralProgramError):
    """Reward is no longer pending"""

    error_code = "INVALID_REWARD_STATE"
    status_code = 409

    def __init__(self, reward_id: str, current_status: str):
        super().__init__(
            f"Reward is already {current_status}",
            {"reward_id": reward_id, "status": current_status},
        )


class SettlementInProgress(ReferralProgramError):
    """Another settlement holds the reward or its order"""

    error_code = "SETTLEMENT_IN_PROGRESS"
    status_code = 409

    def __init__(self, lock_key: str):
        super().__init__(
            "A settlement for this reward or order is already running; retry shortly",
            {"lock": lock_key},
        )


class NoOrderAvailable(ReferralProgramError):
    """Neither an override nor a stored origin order is available for the refund"""

    error_code = "NO_ORDER_AVAILABLE"
    status_code = 422

    def __init__(self, reward_id: str):
        super().__init__(
            "No order is linked to this reward; supply an order to refund against",
            {"reward_id": reward_id},
        )


class RefundCeilingExceeded(ReferralProgramError):
    """Settling the reward would refund more than the allowed share of the order"""

    error_code = "REFUND_CEILING_EXCEEDED"
    status_code = 409

    def __init__(self, remaining, ceiling, already_paid, order_gid: str, currency: str):
        super().__init__(
            f"Refund ceiling reached for this order. Remaining: {remaining:.2f} {currency}",
            {
                "remaining": str(remaining),
                "ceiling": str(ceiling),
                "already_paid": str(already_paid),
                "order_gid": order_gid,
                "currency": currency,
            },
        )
        self.remaining = remaining
        self.ceiling = ceiling
        self.already_paid = already_paid


class OrderTotalUnavailable(ReferralProgramError):
    error_code = "ORDER_TOTAL_UNAVAILABLE"
    status_code = 409

    def __init__(self, order_gid: str):
        super().__init__(
            "Order total could not be determined; refund ceiling cannot be enforced",
            {"order_gid": order_gid},
        )


class DiscountSyncFailed(ReferralProgramError):
    error_code = "DISCOUNT_SYNC_FAILED"
    status_code = 502

    def __init__(self, code_id: str):
        super().__init__("Discount could not be synchronized with Shopify", {"code_id": code_id})


class InvalidEmailTemplate(ReferralProgramError):
    error_code = "INVALID_EMAIL_TEMPLATE"
    status_code = 422

    def __init__(self, template: str, field: str, error: str):
        super().__init__(
            f"Template {field} does not compile: {error}",
            {"template": template, "field": field},
        )


class ShopifyAPIError(ReferralProgramError):
    """Transport, HTTP or GraphQL level failure talking to Shopify"""

    error_code = "SHOPIFY_API_ERROR"
    status_code = 502


class ShopifyUserError(ShopifyAPIError):
    """Shopify accepted the request but rejected it with userErrors"""

    error_code = "SHOPIFY_USER_ERROR"
    status_code = 502

    def __init__(self, message: str, user_errors: List[Dict[str, Any]]):
        super().__init__(message, {"user_errors": user_errors})
        self.user_errors = user_errors


class OrderTemporarilyUnavailable(ShopifyUserError):
    """Order is locked for modification; the call may be retried"""

    error_code = "ORDER_TEMPORARILY_UNAVAILABLE"
    status_code = 503


class RefundFailed(ReferralProgramError):
    error_code = "REFUND_FAILED"
    status_code = 502

    def __init__(self, message: str, order_gid: str, attempts: int):
        super().__init__(message, {"order_gid": order_gid, "attempts": attempts})
