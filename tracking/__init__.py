"""Recurring schedule reconciliation for the tutoring tracker."""
