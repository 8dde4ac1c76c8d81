"""
Domain constants used across services/routers.

Gateway code tables live here as plain dicts so a new response code is a data
change, not a control-flow change.
"""
from domain.enums import PaymentOutcome

# ── Order numbers ───────────────────────────────────────────────────
ORDER_NUMBER_SUFFIX_LENGTH = 9
ORDER_NUMBER_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"

# ── VNPay (Gateway A) ───────────────────────────────────────────────
VNPAY_VERSION = "2.1.0"
VNPAY_COMMAND = "pay"
VNPAY_CURRENCY = "VND"
VNPAY_DEFAULT_LOCALE = "vn"
VNPAY_ORDER_TYPE = "other"
VNPAY_MAX_ORDER_REF_LENGTH = 100
VNPAY_MAX_DESCRIPTION_LENGTH = 255
VNPAY_DEFAULT_IP = "127.0.0.1"
VNPAY_SIGNATURE_FIELD = "vnp_SecureHash"
VNPAY_SIGNATURE_TYPE_FIELD = "vnp_SecureHashType"

VNPAY_SUCCESS_CODE = "00"

# vnp_ResponseCode → user-facing message (verbatim)
VNPAY_RESPONSE_MESSAGES: dict[str, str] = {
    "00": "Giao dịch thành công",
    "07": "Trừ tiền thành công. Giao dịch bị nghi ngờ (liên quan tới lừa đảo, giao dịch bất thường).",
    "09": "Thẻ/Tài khoản chưa đăng ký dịch vụ InternetBanking",
    "10": "Xác thực thông tin thẻ/tài khoản không đúng quá 3 lần",
    "11": "Đã hết hạn chờ thanh toán. Xin vui lòng thực hiện lại giao dịch.",
    "12": "Thẻ/Tài khoản bị khóa.",
    "13": "Nhập sai mật khẩu xác thực giao dịch (OTP). Xin vui lòng thực hiện lại giao dịch.",
    "51": "Tài khoản không đủ số dư để thực hiện giao dịch.",
    "65": "Tài khoản đã vượt quá hạn mức giao dịch trong ngày.",
    "75": "Ngân hàng thanh toán đang bảo trì.",
    "79": "Nhập sai mật khẩu thanh toán quá số lần quy định. Xin vui lòng thực hiện lại giao dịch.",
    "99": "Lỗi không xác định",
    "03": "Dữ liệu không hợp lệ (Invalid data format)",
}
VNPAY_UNKNOWN_MESSAGE = VNPAY_RESPONSE_MESSAGES["99"]

# vnp_ResponseCode → outcome. "00" only counts as SUCCESS when
# vnp_TransactionStatus is also "00" (checked by the adapter).
VNPAY_RESPONSE_OUTCOMES: dict[str, PaymentOutcome] = {
    "00": PaymentOutcome.SUCCESS,
    "24": PaymentOutcome.USER_CANCELLED,
}

# vnp_TransactionStatus → outcome, consulted when the response code is not decisive
VNPAY_TRANSACTION_STATUS_OUTCOMES: dict[str, PaymentOutcome] = {
    "01": PaymentOutcome.PENDING,
}

# IPN (server-to-server) answers: RspCode → Message
VNPAY_IPN_CONFIRMED = ("00", "Confirm Success")
VNPAY_IPN_ORDER_NOT_FOUND = ("01", "Order not found")
VNPAY_IPN_ALREADY_CONFIRMED = ("02", "Order already confirmed")
VNPAY_IPN_INVALID_AMOUNT = ("04", "Invalid amount")
VNPAY_IPN_INVALID_SIGNATURE = ("97", "Invalid signature")
VNPAY_IPN_RETRY = ("99", "Unknown error")

# ── SePay (Gateway B) ───────────────────────────────────────────────
SEPAY_OPERATION = "PURCHASE"
SEPAY_CURRENCY = "VND"
SEPAY_SIGNATURE_FIELD = "signature"
SEPAY_DEFAULT_FAILURE_MESSAGE = "Thanh toán thất bại"

# Field order the SePay SDK signs in. Anything else (custom_data) is unsigned.
SEPAY_SIGNED_FIELDS: tuple[str, ...] = (
    "merchant",
    "operation",
    "payment_method",
    "order_amount",
    "currency",
    "order_invoice_number",
    "order_description",
    "customer_id",
    "success_url",
    "error_url",
    "cancel_url",
)

# Signed callback (strict mode). Distinct from the checkout form field list;
# covers the outcome and transaction id, all but currency required.
SEPAY_CALLBACK_SIGNED_FIELDS: tuple[str, ...] = (
    "merchant",
    "order_invoice_number",
    "order_amount",
    "currency",
    "status",
    "transaction_id",
)
SEPAY_CALLBACK_REQUIRED_FIELDS = frozenset(
    {"merchant", "order_invoice_number", "order_amount", "status", "transaction_id"}
)

# Our payment methods → SePay payment_method values
SEPAY_PAYMENT_METHODS: dict[str, str] = {
    "CARD": "BANK_TRANSFER",
    "BANK_TRANSFER": "BANK_TRANSFER",
    "QR": "BANK_TRANSFER",
}

# status query parameter (lower-cased) → outcome; anything else is FAILED
SEPAY_STATUS_OUTCOMES: dict[str, PaymentOutcome] = {
    "success": PaymentOutcome.SUCCESS,
    "00": PaymentOutcome.SUCCESS,
    "pending": PaymentOutcome.PENDING,
    "cancel": PaymentOutcome.USER_CANCELLED,
    "canceled": PaymentOutcome.USER_CANCELLED,
    "cancelled": PaymentOutcome.USER_CANCELLED,
}

SEPAY_OUTCOME_MESSAGES: dict[PaymentOutcome, str] = {
    PaymentOutcome.SUCCESS: "Thanh toán thành công",
    PaymentOutcome.PENDING: "Đang chờ xác nhận thanh toán",
    PaymentOutcome.USER_CANCELLED: "Đã hủy thanh toán",
}

# Back-office API paths (relative to SePayConfig.api_url)
SEPAY_API_ORDER_DETAIL = "/v1/order/detail/{order_invoice_number}"
SEPAY_API_VOID_TRANSACTION = "/v1/order/voidTransaction"
SEPAY_API_CANCEL_ORDER = "/v1/order/cancel"

# Callback keys that may carry the order reference, in lookup order
SEPAY_ORDER_REF_KEYS: tuple[str, ...] = ("order_invoice_number", "orderNumber", "order_id", "orderId")

# ── Callback failure tokens (the ?error= value on the failure page) ─
ERROR_INVALID_RESPONSE = "invalid_response"
ERROR_VERIFICATION_FAILED = "verification_failed"
ERROR_MISSING_ORDER_NUMBER = "missing_order_number"
ERROR_ORDER_NOT_FOUND = "order_not_found"
ERROR_AMOUNT_MISMATCH = "amount_mismatch"
ERROR_INTERNAL = "internal_error"

# ── Redirect paths (joined onto settings.app_base_url) ──────────────
ORDER_DETAIL_PATH = "/orders/{order_id}"
PAYMENT_FAILED_PATH = "/payment/failed"

# ── Audit reasons ───────────────────────────────────────────────────
REASON_EXPIRED = "expired"
REASON_USER_CANCELLED = "user_cancelled"
REASON_AUTO_RECEIVED = "auto_received"
