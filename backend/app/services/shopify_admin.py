"""
Shopify Admin API Client

Thin async wrapper around the Admin GraphQL endpoint and the REST order
endpoints used by the referral program.

Usage:
    client = ShopifyAdminClient()
    total = await client.get_order_total_amount("gid://shopify/Order/1")
"""

from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional
import httpx
import structlog

from app.core.config import settings
from app.core.exceptions import (
    ShopifyAPIError, ShopifyUserError, OrderTemporarilyUnavailable
)
from app.models.code import DiscountDetails
from app.models.order import CustomerOrder

logger = structlog.get_logger()

ORDER_UNAVAILABLE_MARKERS = ("temporarily unavailable", "unavailable to be modified")
PAYMENT_TRANSACTION_KINDS = ("CAPTURE", "SALE")


FIND_CUSTOMER_QUERY = """
query FindCustomerByEmail($query: String!) {
  customers(first: 1, query: $query) {
    edges { node { id email firstName lastName } }
  }
}
"""

CREATE_CUSTOMER_MUTATION = """
mutation CreateCustomer($input: CustomerInput!) {
  customerCreate(input: $input) {
    customer { id email firstName lastName }
    userErrors { field message }
  }
}
"""

ORDER_TRANSACTIONS_QUERY = """
query GetOrderTransactions($orderId: ID!) {
  order(id: $orderId) {
    transactions(first: 10) { id kind status }
  }
}
"""

ORDER_TOTAL_QUERY = """
query GetOrderTotal($orderId: ID!) {
  order(id: $orderId) {
    totalPriceSet { presentmentMoney { amount currencyCode } }
  }
}
"""

DISCOUNT_CREATE_MUTATION = """
mutation CreateReferralDiscount($input: DiscountCodeBasicInput!) {
  discountCodeBasicCreate(basicCodeDiscount: $input) {
    codeDiscountNode { id }
    userErrors { field message code }
  }
}
"""

DISCOUNT_UPDATE_MUTATION = """
mutation UpdateReferralDiscount($id: ID!, $input: DiscountCodeBasicInput!) {
  discountCodeBasicUpdate(id: $id, basicCodeDiscount: $input) {
    codeDiscountNode { id }
    userErrors { field message }
  }
}
"""

DISCOUNT_DELETE_MUTATION = """
mutation DeleteReferralDiscount($id: ID!) {
  discountCodeDelete(id: $id) {
    deletedCodeDiscountId
    userErrors { message }
  }
}
"""

DISCOUNT_DETAILS_QUERY = """
query GetReferralDiscountDetails($ids: [ID!]!) {
  nodes(ids: $ids) {
    __typename
    ... on DiscountCodeNode {
      id
      codeDiscount {
        __typename
        ... on DiscountCodeBasic {
          title
          status
          startsAt
          endsAt
          usageLimit
          appliesOncePerCustomer
          customerGets {
            value {
              __typename
              ... on DiscountPercentage { percentage }
              ... on DiscountAmount { amount { amount currencyCode } }
            }
          }
        }
      }
    }
  }
}
"""

REFUND_MUTATION = """
mutation RefundReferral($input: RefundInput!) {
  refundCreate(input: $input) {
    refund {
      id
      totalRefundedSet { presentmentMoney { amount currencyCode } }
    }
    userErrors { field message }
  }
}
"""


def numeric_id(gid: str) -> str:
    """gid://shopify/Customer/42 -> 42"""
    return str(gid).rsplit("/", 1)[-1]


def order_gid(order_id) -> str:
    return f"gid://shopify/Order/{order_id}"


def _to_decimal(value) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def _parse_datetime(value) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def _user_error_messages(user_errors: List[Dict[str, Any]]) -> str:
    parts = []
    for error in user_errors:
        field = ".".join(error.get("field") or [])
        message = error.get("message") or ""
        parts.append(f"{field}: {message}" if field and message else message or field)
    return " | ".join(p for p in parts if p)


def is_order_unavailable(user_errors: List[Dict[str, Any]]) -> bool:
    """Shopify reports a locked order through userErrors, not an HTTP status"""
    for error in user_errors:
        message = (error.get("message") or "").lower()
        if any(marker in message for marker in ORDER_UNAVAILABLE_MARKERS):
            return True
    return False


class ShopifyAdminClient:
    """Shopify Admin API client for a single store"""

    def __init__(
        self,
        store_domain: Optional[str] = None,
        access_token: Optional[str] = None,
        api_version: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.store_domain = store_domain or settings.SHOPIFY_STORE_DOMAIN
        self.access_token = access_token or settings.SHOPIFY_ADMIN_ACCESS_TOKEN
        self.api_version = api_version or settings.SHOPIFY_API_VERSION
        self.timeout = timeout or settings.SHOPIFY_HTTP_TIMEOUT_SECONDS
        self._transport = transport

    @property
    def base_url(self) -> str:
        return f"https://{self.store_domain}/admin/api/{self.api_version}"

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[Dict] = None,
        params: Optional[Dict] = None,
    ) -> Dict[str, Any]:
        if not self.store_domain or not self.access_token:
            raise ShopifyAPIError("Shopify store domain or access token is not configured")

        headers = {
            "Content-Type": "application/json",
            "X-Shopify-Access-Token": self.access_token,
        }
        url = f"{self.base_url}/{path.lstrip('/')}"

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.request(method, url, headers=headers, json=json, params=params)
        except httpx.TimeoutException as e:
            logger.error("Shopify request timed out", path=path, error=str(e))
            raise ShopifyAPIError("Shopify request timed out", {"path": path})
        except httpx.HTTPError as e:
            logger.error("Shopify request failed", path=path, error=str(e))
            raise ShopifyAPIError(f"Shopify request failed: {e}", {"path": path})

        if response.status_code >= 400:
            logger.error("Shopify API error", path=path, status_code=response.status_code, body=response.text[:500])
            raise ShopifyAPIError(
                f"Shopify API returned {response.status_code}",
                {"path": path, "status_code": response.status_code},
            )

        return response.json() if response.text else {}

    async def graphql(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Run a GraphQL operation and return its data block"""
        body = await self._request("POST", "graphql.json", json={"query": query, "variables": variables or {}})

        errors = body.get("errors")
        if errors:
            logger.error("Shopify GraphQL errors", errors=errors)
            raise ShopifyAPIError("Shopify GraphQL error", {"errors": errors})

        return body.get("data") or {}

    # ==================== ORDERS ====================

    async def fetch_order(self, order_id: str) -> Dict[str, Any]:
        """REST order payload including line items"""
        body = await self._request("GET", f"orders/{order_id}.json")
        return body.get("order") or {}

    async def fetch_orders_for_customer(self, customer_id: str, limit: int = 10) -> List[CustomerOrder]:
        limit = min(max(limit, 1), 50)
        body = await self._request(
            "GET",
            "orders.json",
            params={
                "customer_id": customer_id,
                "status": "any",
                "limit": limit,
                "order": "created_at desc",
            },
        )

        orders = []
        for order in body.get("orders") or []:
            presentment = (order.get("total_price_set") or {}).get("presentment_money") or {}
            orders.append(CustomerOrder(
                id=order.get("admin_graphql_api_id") or order_gid(order.get("id")),
                name=order.get("name") or f"#{order.get('id')}",
                created_at=_parse_datetime(order.get("created_at")),
                total=_to_decimal(presentment.get("amount") or order.get("total_price")),
                currency=presentment.get("currency_code") or order.get("currency"),
                financial_status=order.get("financial_status"),
            ))
        return orders

    async def get_order_transaction_parent_id(self, order_gid: str) -> Optional[str]:
        """Id of the successful capture/sale transaction that funded the order"""
        try:
            data = await self.graphql(ORDER_TRANSACTIONS_QUERY, {"orderId": order_gid})
        except ShopifyAPIError as e:
            logger.warning("Order transaction lookup failed", order_gid=order_gid, error=e.message)
            return None

        transactions = (data.get("order") or {}).get("transactions") or []
        for transaction in transactions:
            if transaction.get("kind") in PAYMENT_TRANSACTION_KINDS and transaction.get("status") == "SUCCESS":
                return transaction.get("id")
        return None

    async def get_order_total_amount(self, order_gid: str) -> Optional[Decimal]:
        try:
            data = await self.graphql(ORDER_TOTAL_QUERY, {"orderId": order_gid})
        except ShopifyAPIError as e:
            logger.warning("Order total lookup failed", order_gid=order_gid, error=e.message)
            return None

        money = (((data.get("order") or {}).get("totalPriceSet") or {}).get("presentmentMoney") or {})
        return _to_decimal(money.get("amount"))

    # ==================== CUSTOMERS ====================

    async def find_customer_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        data = await self.graphql(FIND_CUSTOMER_QUERY, {"query": f'email:"{email}"'})
        edges = (data.get("customers") or {}).get("edges") or []
        if not edges:
            return None
        return self._normalize_customer(edges[0].get("node"))

    async def create_customer(
        self,
        email: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
    ) -> Dict[str, Any]:
        customer_input = {"email": email}
        if first_name:
            customer_input["firstName"] = first_name
        if last_name:
            customer_input["lastName"] = last_name

        data = await self.graphql(CREATE_CUSTOMER_MUTATION, {"input": customer_input})
        payload = data.get("customerCreate")
        if not payload:
            raise ShopifyAPIError("Unexpected Shopify response while creating customer")

        user_errors = payload.get("userErrors") or []
        if user_errors:
            raise ShopifyUserError(_user_error_messages(user_errors) or "Customer creation rejected", user_errors)

        customer = self._normalize_customer(payload.get("customer"))
        if not customer:
            raise ShopifyAPIError("Shopify returned an invalid customer")
        return customer

    async def get_or_create_customer_by_email(
        self,
        email: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
    ):
        """Returns (customer, created)"""
        existing = await self.find_customer_by_email(email)
        if existing:
            return existing, False

        customer = await self.create_customer(email, first_name, last_name)
        logger.info("Shopify customer created", customer_id=customer["id"])
        return customer, True

    @staticmethod
    def _normalize_customer(node: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        if not node or not node.get("id") or not node.get("email"):
            return None
        return {
            "id": numeric_id(node["id"]),
            "email": node["email"],
            "first_name": node.get("firstName"),
            "last_name": node.get("lastName"),
        }

    # ==================== DISCOUNTS ====================

    async def create_discount(self, discount_input: Dict[str, Any]) -> str:
        data = await self.graphql(DISCOUNT_CREATE_MUTATION, {"input": discount_input})
        return self._discount_node_id(data.get("discountCodeBasicCreate"), "create")

    async def update_discount(self, discount_id: str, discount_input: Dict[str, Any]) -> str:
        data = await self.graphql(DISCOUNT_UPDATE_MUTATION, {"id": discount_id, "input": discount_input})
        return self._discount_node_id(data.get("discountCodeBasicUpdate"), "update")

    @staticmethod
    def _discount_node_id(payload: Optional[Dict[str, Any]], action: str) -> str:
        if not payload:
            raise ShopifyAPIError(f"Unexpected Shopify response on discount {action}")

        user_errors = payload.get("userErrors") or []
        if user_errors:
            raise ShopifyUserError(_user_error_messages(user_errors) or f"Discount {action} rejected", user_errors)

        node_id = (payload.get("codeDiscountNode") or {}).get("id")
        if not node_id:
            raise ShopifyAPIError(f"Shopify did not return a discount id on {action}")
        return node_id

    async def delete_discount(self, discount_id: str) -> None:
        data = await self.graphql(DISCOUNT_DELETE_MUTATION, {"id": discount_id})
        payload = data.get("discountCodeDelete")
        if not payload:
            raise ShopifyAPIError("Unexpected Shopify response on discount delete")

        user_errors = payload.get("userErrors") or []
        if user_errors:
            raise ShopifyUserError(_user_error_messages(user_errors) or "Discount delete rejected", user_errors)

        if not payload.get("deletedCodeDiscountId"):
            raise ShopifyAPIError("Shopify did not confirm the discount deletion")

    async def fetch_discount_details(self, discount_ids: List[str]) -> Dict[str, DiscountDetails]:
        """Best-effort details keyed by discount id; empty on failure"""
        unique_ids = list(dict.fromkeys(i for i in discount_ids if i))
        if not unique_ids:
            return {}

        try:
            data = await self.graphql(DISCOUNT_DETAILS_QUERY, {"ids": unique_ids})
        except ShopifyAPIError as e:
            logger.warning("Discount details lookup failed", error=e.message)
            return {}

        details = {}
        for node in data.get("nodes") or []:
            if not node or node.get("__typename") != "DiscountCodeNode" or not node.get("id"):
                continue

            discount = node.get("codeDiscount") or {}
            value = (discount.get("customerGets") or {}).get("value") or {}
            percentage = None
            amount = None
            if value.get("__typename") == "DiscountPercentage":
                percentage = _to_decimal(value.get("percentage"))
            elif value.get("__typename") == "DiscountAmount":
                amount = _to_decimal((value.get("amount") or {}).get("amount"))

            details[node["id"]] = DiscountDetails(
                id=node["id"],
                title=discount.get("title"),
                status=discount.get("status"),
                percentage=percentage,
                amount=amount,
                usage_limit=discount.get("usageLimit"),
                applies_once_per_customer=discount.get("appliesOncePerCustomer"),
                starts_at=_parse_datetime(discount.get("startsAt")),
                ends_at=_parse_datetime(discount.get("endsAt")),
            )
        return details

    # ==================== REFUNDS ====================

    async def create_refund(
        self,
        order_gid: str,
        amount: Decimal,
        note: str,
        parent_transaction_id: Optional[str] = None,
        gateway: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Single refundCreate call; raises OrderTemporarilyUnavailable when the order is locked"""
        transaction = {
            "orderId": order_gid,
            "amount": f"{Decimal(amount):.2f}",
            "kind": "REFUND",
        }
        if parent_transaction_id:
            transaction["parentId"] = parent_transaction_id
        else:
            transaction["gateway"] = gateway or settings.SHOPIFY_REFUND_GATEWAY

        data = await self.graphql(REFUND_MUTATION, {
            "input": {
                "note": note,
                "orderId": order_gid,
                "transactions": [transaction],
            }
        })

        payload = data.get("refundCreate")
        if not payload:
            raise ShopifyAPIError("Unexpected Shopify response on refund creation")

        user_errors = payload.get("userErrors") or []
        if user_errors:
            message = _user_error_messages(user_errors) or "Refund rejected"
            if is_order_unavailable(user_errors):
                raise OrderTemporarilyUnavailable(message, user_errors)
            raise ShopifyUserError(message, user_errors)

        return payload.get("refund") or {}


shopify_client = ShopifyAdminClient()


def get_shopify_client() -> ShopifyAdminClient:
    """Dependency provider for the Shopify client"""
    return shopify_client
