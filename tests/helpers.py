from datetime import datetime, timedelta, timezone

T1 = datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)
T2 = T1 + timedelta(hours=1)
T3 = T1 + timedelta(days=1)
T4 = T1 + timedelta(days=2)
