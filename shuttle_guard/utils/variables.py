'''
Define variables used across the entire applications
'''


EARTH_RADIUS_M = 6_371_000          # mean Earth radius used by the Haversine formula

DEFAULT_GEOFENCE_RADIUS_M = 15      # stop geofence radius when the stop has none set
GEOFENCE_DEBOUNCE_SECONDS = 60      # repeated "enter" for the same vehicle/stop is suppressed inside this window

KNOTS_TO_KMH = 1.852                # Traccar reports speeds in knots

SYNTHETIC_KEY_FACTOR = 1_000_000    # traccar_trip_id = deviceId * factor + (startTime ms % factor)

DEFAULT_SYNC_WINDOW_DAYS = 7        # on-demand sync window when the caller gives no range
DEFAULT_TRIP_LIST_LIMIT = 50
DEFAULT_VEHICLE_TRIP_LIMIT = 20
