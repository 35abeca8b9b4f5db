# Models package - Export all models

from .common import ErrorResponse, WebhookAck, DeleteResponse

from .settings import (
    ReferralSettings, ReferralSettingsUpdate, ReferralSettingsResponse,
    AllCustomers, CustomerSegments, Audience
)

from .code import (
    ReferralCode, ReferralCodeInDB, IssuedCode, CodeOrigin, CodeIssuancePolicy,
    DiscountDetails, RefundProgress
)

from .referral import (
    Referral, ReferralInDB, RecordedReferral, RefereeIdentity, ReferralStats
)

from .reward import (
    Reward, RewardInDB, RewardStatus, RewardContext, RewardStats, RewardStatusStats,
    SettleRewardRequest, FailRewardRequest, SettlementResult
)

from .referrer import (
    Referrer, ReferrerInDB, ReferrerCreate, ReferrerSummary, ReferrerDetail,
    CustomerIdentity, ProvisioningResult
)

from .order import (
    OrderPaidPayload, OrderCustomer, ProductAttribution, CustomerOrder, RefundOutcome
)

from .email import EmailLogInDB, EmailTemplate, EmailStatus, EmailTemplateContent, EmailTemplateUpdate

from .statistics import (
    Statistics, StatisticsSummary, TimeSeriesPoint, TopReferrer, Workshop, WorkshopParticipant
)
