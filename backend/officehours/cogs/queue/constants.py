"""Queue feature constants."""

import discord

# Theme
OPEN_COLOR = discord.Color.from_str("#3BA55C")
CLOSED_COLOR = discord.Color.from_str("#ED4245")
PAUSED_COLOR = discord.Color.from_str("#FAA61A")

# Provisioning
QUEUE_TEXT_CHANNEL = "queue"
QUEUE_ROLE_REASON = "Office hours queue"

# Session invites
INVITE_MAX_AGE_SECONDS = 15 * 60

# Panel button custom ids, formatted with the queue id
JOIN_ID = "officehours:join:{queue_id}"
LEAVE_ID = "officehours:leave:{queue_id}"
NOTIFY_ID = "officehours:notify:{queue_id}"
UNNOTIFY_ID = "officehours:unnotify:{queue_id}"

MAX_LISTED_PARTICIPANTS = 25
