"""Import every ORM module so Base.metadata knows all tables."""

from vpnpanel.auth.models import User  # noqa: F401
from vpnpanel.backups.models import Backup, BackupConfig  # noqa: F401
from vpnpanel.banners.models import Banner  # noqa: F401
from vpnpanel.gateways.models import Gateway  # noqa: F401
from vpnpanel.notifications.models import Notification  # noqa: F401
from vpnpanel.partners.models import (  # noqa: F401
    Partner,
    PartnerActivationLog,
    PartnerEarning,
    PartnerPayout,
    PartnerSettings,
)
from vpnpanel.payments.models import Payment  # noqa: F401
from vpnpanel.plans.models import Plan  # noqa: F401
from vpnpanel.promocodes.models import Promocode, PromocodeActivation  # noqa: F401
from vpnpanel.referral.models import Referral, ReferralReward, ReferralRule  # noqa: F401
from vpnpanel.remnawave.models import RemnawaveUserLink, SyncLog  # noqa: F401
from vpnpanel.statistics.models import DailyStatistics  # noqa: F401
from vpnpanel.subscriptions.models import Subscription  # noqa: F401
