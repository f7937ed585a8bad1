"""groupguard - remove one actor from every WhatsApp group you administer."""

__version__ = "0.1.0"
__logo__ = "🛡️"
