IDLE = "IDLE"
ORDER_COLLECTING = "ORDER_COLLECTING"
ORDER_REVIEW = "ORDER_REVIEW"
LOCATION_REQUEST = "LOCATION_REQUEST"
PAYMENT_METHOD_SELECTION = "PAYMENT_METHOD_SELECTION"
PAYMENT_PENDING = "PAYMENT_PENDING"
ORDER_CONFIRMED = "ORDER_CONFIRMED"
AGENT_HANDOFF = "AGENT_HANDOFF"

