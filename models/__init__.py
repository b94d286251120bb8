from .device import Device
from .beacon import Beacon
from .blindspot import (
    BlindSpotIncidence,
    BlindSpotCallHistory,
    BlindSpotSmsHistory,
    BlindSpotLastSms,
)
