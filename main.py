from nameban_telegram.app import run
import os

# Optionally set BOT_TOKEN and ADMINS here instead of using .env or external
# environment variables. Leave empty to read from the environment as usual.
# Examples:
# BOT_TOKEN = "123456:ABC-def"
# ADMINS = "6209247387,123456789"
# ALLOWED_CHAT_IDS = "-1001540576068"
BOT_TOKEN = ''
ADMINS = ''
ALLOWED_CHAT_IDS = ''


if __name__ == "__main__":
	# If values provided in this file, write them into environment so the app
	# reads them (the app reads ADMINS from os.environ).
	if BOT_TOKEN:
		os.environ["BOT_TOKEN"] = BOT_TOKEN
	if ADMINS:
		os.environ["ADMINS"] = ADMINS
	if ALLOWED_CHAT_IDS:
		os.environ["ALLOWED_CHAT_IDS"] = ALLOWED_CHAT_IDS

	run()
