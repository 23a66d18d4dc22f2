"""Recalculation engine for flows of formula modules."""
