"""Application-wide configuration constants."""

import os

# --- Wireless ---
# Interface that wpa_supplicant manages (P2P device is created on top of it)
WIFI_DIRECT_INTERFACE = os.environ.get("WIFI_DIRECT_INTERFACE", "wlan0")
WPS_METHOD = os.environ.get("WIFI_DIRECT_WPS_METHOD", "pbc")  # "pbc" | "pin" | "display" | "keypad"

# --- wpa_supplicant D-Bus names ---
WPA_SUPPLICANT_DEST = "fi.w1.wpa_supplicant1"
WPA_SUPPLICANT_PATH = "/fi/w1/wpa_supplicant1"
WPA_SUPPLICANT_IFACE = "fi.w1.wpa_supplicant1"
WPA_SUPPLICANT_P2P_IFACE = "fi.w1.wpa_supplicant1.Interface.P2PDevice"

# --- Channel ---
COMMAND_QUEUE_SIZE = int(os.environ.get("WIFI_DIRECT_COMMAND_QUEUE_SIZE", "32"))
EVENT_BUFFER_SIZE = int(os.environ.get("WIFI_DIRECT_EVENT_BUFFER_SIZE", "64"))

# --- Example service ---
API_HOST = os.environ.get("WIFI_DIRECT_API_HOST", "127.0.0.1")
API_PORT = int(os.environ.get("WIFI_DIRECT_API_PORT", "8765"))
