"""
Company site backend.

Services behind the marketing site and its back office: customer dashboard,
content management, notification center, contact form and the daily
maintenance job. Analytics lives in :mod:`backend.analytics`.
"""

from .configuration import SiteConfig, load_site_config  # noqa: F401
from .contact import ContactService, ContactSubmission, EmailSender  # noqa: F401
from .content import ContentManager  # noqa: F401
from .customer import CustomerDashboard  # noqa: F401
from .notifications import NotificationCenter, NotificationChangeFeed, NotificationSettings  # noqa: F401
from .storage import SiteStore, build_engine  # noqa: F401
