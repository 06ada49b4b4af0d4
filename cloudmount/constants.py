"""Module defining various global constants."""

# cloudmount version
VERSION = "1.0.0"

# Special exit code for when cloudmount itself fails.
CLOUDMOUNT_ERROR_CODE = 254

# Identity of the file system as registered with the host. Only one mount with this
# identifier may exist at a time.
FILE_SYSTEM_ID = "cloudmountfs"

# Name of the file system as displayed by the host
FILE_SYSTEM_NAME = "Cloud Drive"

# Key under which the access token is persisted across process restarts.
ACCESS_TOKEN_KEY = "accessToken"
