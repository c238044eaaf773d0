"""
sms-store: Kafka SMS events persisted to MongoDB and served over HTTP.
"""
