# Overview: Shared vocabulary for line kinds, sale types and payment methods.

KIND_INVENTORY = "INVENTORY"
KIND_MEMBERSHIP = "MEMBERSHIP"
LINE_KINDS = (KIND_INVENTORY, KIND_MEMBERSHIP)

SALE_TYPE_GOODS = "GOODS_SALE"
SALE_TYPE_MEMBERSHIP = "MEMBERSHIP_SALE"
SALE_TYPE_MIXED = "MIXED_SALE"

PAYMENT_CARD = "Card"
PAYMENT_CASH = "Cash"
PAYMENT_TRANSFER = "Transfer"
PAYMENT_METHODS = (PAYMENT_CARD, PAYMENT_CASH, PAYMENT_TRANSFER)

MEMBERSHIP_STATUS_ACTIVE = "Active"
