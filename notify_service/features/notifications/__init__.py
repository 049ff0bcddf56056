"""Multi-tenant notification delivery.

This feature accepts notification requests from producers and delivers them
to recipients over in-app and email channels:
- Idempotent creation keyed by a per-tenant deduplication key
- Priority lanes with optional scheduled delivery
- Recipient preferences (category switches, quiet hours, daily caps)
- Per-channel delivery tracking with exponential-backoff retries
- Retention cleanup and rolling statistics

Architecture:
    - Models: Notification, NotificationDelivery, NotificationTemplate, NotificationPreference
    - Channels: Pluggable senders for in-app and email
    - Queue: Lane-aware publishing over taskiq brokers with APScheduler schedules
    - Service: Creation, processing, retries, cancellation, cleanup and stats
    - Workers: taskiq tasks and periodic sweeps driving the service

Example:
    ```python
    async with get_async_session() as session:
        result = await get_notification_service().create_notification(
            session,
            NotificationCreate(
                tenant_id="acme",
                user_id="user-123",
                type="billing_limit_warning",
                category="billing",
                title="You are close to your plan limit",
                message="You have used 90% of this month's quota.",
            ),
        )
    ```

Submodules are imported directly; this package stays import-light so the
task brokers and the service can load each other without cycles.
"""
