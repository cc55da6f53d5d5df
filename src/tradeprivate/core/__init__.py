"""Commitments, orders, keeper selection and the account/order pipelines."""
