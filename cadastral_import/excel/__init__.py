"""Workbook reading and cell coercion."""
