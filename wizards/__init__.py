"""Concrete wizards built on the paged chain engine."""
from wizards.guild_setup import GuildSetupWizard
