"""
WhatsApp Booking Engine Test Suite
"""
