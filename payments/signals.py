from django.dispatch import Signal

# Sent with notification=<Notification>. The provider is still acknowledged.
orphan_notification = Signal()

# Sent with notification=<Notification>, order=<Order>, attempted_status=<str>.
# Never auto-resolved; an operator reviews these.
conflicting_notification = Signal()
