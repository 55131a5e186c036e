"""AirHost relay - Lodgify webhook router and push notification service."""
