"""
Escrow app: held-payment checkout, confirmation and settlement for ticket orders.
"""
