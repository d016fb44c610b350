# wsjtx_packets.py
#
# QDataStream based binary protocol spoken by WSJT-X over UDP
# See Network/NetworkMessage.hpp in the WSJT-X sources

import struct
import datetime

from datetime import timezone

from utils import extract_callsigns, hexdump

HEARTBEAT               = 0
STATUS                  = 1
DECODE                  = 2
CLEAR                   = 3
REPLY                   = 4
QSO_LOGGED              = 5
CLOSE                   = 6
REPLAY                  = 7
HALT_TX                 = 8
FREE_TEXT               = 9
WSPR_DECODE             = 10
LOCATION                = 11
LOGGED_ADIF             = 12
HIGHLIGHT_CALLSIGN      = 13
SWITCH_CONFIGURATION    = 14
CONFIGURE               = 15

MESSAGE_TYPES = {
    HEARTBEAT               : 'HEARTBEAT',
    STATUS                  : 'STATUS',
    DECODE                  : 'DECODE',
    CLEAR                   : 'CLEAR',
    REPLY                   : 'REPLY',
    QSO_LOGGED              : 'QSO_LOGGED',
    CLOSE                   : 'CLOSE',
    REPLAY                  : 'REPLAY',
    HALT_TX                 : 'HALT_TX',
    FREE_TEXT               : 'FREE_TEXT',
    WSPR_DECODE             : 'WSPR_DECODE',
    LOCATION                : 'LOCATION',
    LOGGED_ADIF             : 'LOGGED_ADIF',
    HIGHLIGHT_CALLSIGN      : 'HIGHLIGHT_CALLSIGN',
    SWITCH_CONFIGURATION    : 'SWITCH_CONFIGURATION',
    CONFIGURE               : 'CONFIGURE',
}

NULL_STRING_LENGTH      = 0xFFFFFFFF
JULIAN_DAY_UNIX_EPOCH   = 2440588
UNIX_EPOCH              = datetime.datetime(1970, 1, 1, tzinfo=timezone.utc)

QCOLOR_SPEC_INVALID     = -1
QCOLOR_SPEC_RGB         = 1

class PacketError(Exception):
    pass

class MagicNumberError(PacketError):
    pass

class PacketUtil:
    @classmethod
    def hexdump(cls, src, length=16):
        return hexdump(src, length)

    @classmethod
    def midnight_utc(cls):
        utcnow = datetime.datetime.now(timezone.utc)
        return datetime.datetime(utcnow.year, utcnow.month, utcnow.day, tzinfo=timezone.utc)

    @classmethod
    def datetime_to_julian_day(cls, dt):
        a = (14 - dt.month) // 12
        y = dt.year + 4800 - a
        m = dt.month + 12 * a - 3
        jd = dt.day + ((153 * m + 2) // 5) + 365 * y + y // 4 - y // 100 + y // 400 - 32045
        return jd

    @classmethod
    def julian_day_to_datetime(cls, julian_day, millis_since_midnight, offset_seconds=0):
        return UNIX_EPOCH + datetime.timedelta(
            days            = julian_day - JULIAN_DAY_UNIX_EPOCH,
            milliseconds    = millis_since_midnight,
            seconds         = -offset_seconds
        )

class GenericWSJTXPacket(object):
    SCHEMA_VERSION = 3
    MINIMUM_SCHEMA_SUPPORTED = 2
    MAXIMUM_SCHEMA_SUPPORTED = 3
    MINIMUM_NETWORK_MESSAGE_SIZE = 12
    MAXIMUM_NETWORK_MESSAGE_SIZE = 2048
    MAGIC_NUMBER = 0xadbccbda

    def __init__(self, addr_port, magic, schema, pkt_type, id, pkt):
        self.addr_port = addr_port
        self.magic = magic
        self.schema = schema
        self.pkt_type = pkt_type
        self.pkt_id = id
        self.wsjtx_id = id
        self.pkt = pkt

    @property
    def type_name(self):
        return MESSAGE_TYPES.get(self.pkt_type, f"UNKNOWN({self.pkt_type})")

    def __repr__(self):
        return f'{type(self).__name__}: from {self.addr_port} wsjtx id:{self.wsjtx_id} type:{self.type_name}'

class PacketWriter(object):
    def __init__(self, pkt_type=None, wsjtx_id=None):
        self.packet = bytearray()
        self.write_header()
        if pkt_type is not None:
            self.write_QUInt32(pkt_type)
            self.write_QString(wsjtx_id)

    def write_header(self):
        self.write_QUInt32(GenericWSJTXPacket.MAGIC_NUMBER)
        self.write_QUInt32(GenericWSJTXPacket.SCHEMA_VERSION)

    def write_QInt8(self, val):
        self.packet.extend(struct.pack('>b', val))

    def write_QUInt8(self, val):
        self.packet.extend(struct.pack('>B', val))

    def write_QBool(self, val):
        self.packet.extend(struct.pack('>?', bool(val)))

    def write_QInt16(self, val):
        self.packet.extend(struct.pack('>h', val))

    def write_QUInt16(self, val):
        self.packet.extend(struct.pack('>H', val))

    def write_QInt32(self, val):
        self.packet.extend(struct.pack('>l', val))

    def write_QUInt32(self, val):
        self.packet.extend(struct.pack('>L', val))

    def write_QInt64(self, val):
        self.packet.extend(struct.pack('>q', val))

    def write_QUInt64(self, val):
        self.packet.extend(struct.pack('>Q', val))

    def write_QFloat(self, val):
        self.packet.extend(struct.pack('>d', val))

    def write_QString(self, str_val):
        if str_val is None:
            self.write_QUInt32(NULL_STRING_LENGTH)
            return
        b_values = str_val
        if type(str_val) != bytes:
            b_values = str_val.encode('utf-8')
        self.write_QUInt32(len(b_values))
        self.packet.extend(b_values)

    def write_QTime(self, millis_since_midnight):
        self.write_QUInt32(millis_since_midnight)

    def write_QDateTime(self, datetime_obj, spec=1, offset_seconds=0):
        if datetime_obj.tzinfo is not None:
            datetime_obj = datetime_obj.astimezone(timezone.utc).replace(tzinfo=None)
        jd = PacketUtil.datetime_to_julian_day(datetime_obj)
        self.write_QInt64(jd)
        midnight = datetime.datetime.combine(datetime_obj.date(), datetime.time(0, 0, 0))
        millis_since_midnight = int((datetime_obj - midnight).total_seconds() * 1000)
        self.write_QUInt32(millis_since_midnight)
        self.write_QUInt8(spec)
        if spec == 2:
            self.write_QInt32(offset_seconds)

    def write_QColor(self, color_val):
        """
            color_val is a dict with r, g, b and optional a (0-255), None
            writes an invalid color which clears a highlight
        """
        if not color_val:
            self.write_QInt8(QCOLOR_SPEC_INVALID)
            for _ in range(5):
                self.write_QUInt16(0)
            return

        self.write_QInt8(QCOLOR_SPEC_RGB)
        self.write_QUInt16(color_val.get('a', 255) * 257)
        self.write_QUInt16(color_val.get('r', 0) * 257)
        self.write_QUInt16(color_val.get('g', 0) * 257)
        self.write_QUInt16(color_val.get('b', 0) * 257)
        self.write_QUInt16(0)

class PacketReader(object):
    def __init__(self, packet):
        self.ptr_pos = 0
        self.packet = packet
        self.max_ptr_pos = len(packet)-1
        self.skip_header()

    def at_eof(self):
        return self.ptr_pos > self.max_ptr_pos

    def remaining(self):
        return len(self.packet) - self.ptr_pos

    def skip_header(self):
        if self.max_ptr_pos < 8:
            raise PacketError('Not enough data to skip header')
        self.ptr_pos = 8

    def check_ptr_bound(self, field_type, length):
        if self.ptr_pos + length > self.max_ptr_pos + 1:
            raise PacketError('Not enough data to extract {}'.format(field_type))

    def _unpack(self, field_type, fmt, length):
        self.check_ptr_bound(field_type, length)
        (value,) = struct.unpack(fmt, self.packet[self.ptr_pos:self.ptr_pos+length])
        self.ptr_pos += length
        return value

    def QInt8(self):
        return self._unpack('QInt8', '>b', 1)

    def QUInt8(self):
        return self._unpack('QUInt8', '>B', 1)

    def QBool(self):
        return self.QUInt8() != 0

    def QUInt16(self):
        return self._unpack('QUInt16', '>H', 2)

    def QInt32(self):
        return self._unpack('QInt32', '>l', 4)

    def QUInt32(self):
        return self._unpack('QUInt32', '>L', 4)

    def QInt64(self):
        return self._unpack('QInt64', '>q', 8)

    def QUInt64(self):
        return self._unpack('QUInt64', '>Q', 8)

    def QFloat(self):
        return self._unpack('QFloat', '>d', 8)

    def QString(self):
        str_len = self.QUInt32()
        if str_len == NULL_STRING_LENGTH:
            return None
        self.check_ptr_bound('QString[{}]'.format(str_len), str_len)
        str_bytes = bytes(self.packet[self.ptr_pos:self.ptr_pos + str_len])
        self.ptr_pos += str_len
        return str_bytes.decode('utf-8', errors='replace')

    def QTime(self):
        return self.QUInt32()

    def QDateTime(self):
        julian_day = self.QInt64()
        millis_since_midnight = self.QUInt32()
        spec = self.QUInt8()
        offset_seconds = 0
        if spec == 2:
            offset_seconds = self.QInt32()
        try:
            return PacketUtil.julian_day_to_datetime(julian_day, millis_since_midnight, offset_seconds)
        except (OverflowError, ValueError) as e:
            raise PacketError(f'QDateTime out of range (julian day {julian_day}): {e}')

    def QColor(self):
        spec = self.QInt8()
        alpha = self.QUInt16()
        red = self.QUInt16()
        green = self.QUInt16()
        blue = self.QUInt16()
        self.QUInt16()
        if spec == QCOLOR_SPEC_INVALID:
            return None
        return {'r': red // 257, 'g': green // 257, 'b': blue // 257, 'a': alpha // 257}

class HeartBeatPacket(GenericWSJTXPacket):
    TYPE_VALUE = HEARTBEAT

    def __init__(self, addr_port, magic, schema, pkt_type, id, pkt):
        super().__init__(addr_port, magic, schema, pkt_type, id, pkt)
        ps = PacketReader(pkt)
        _ = ps.QUInt32()
        self.wsjtx_id = ps.QString()
        self.max_schema = ps.QUInt32()
        self.version = ps.QString()
        self.revision = ps.QString() if ps.remaining() >= 4 else ''

    def __repr__(self):
        return f'HeartBeatPacket: from {self.addr_port} wsjtx id:{self.wsjtx_id} max_schema:{self.max_schema} version:{self.version} revision:{self.revision}'

    @classmethod
    def Builder(cls, to_wsjtx_id='WSJT-X', max_schema=3, version='', revision=''):
        pkt = PacketWriter(cls.TYPE_VALUE, to_wsjtx_id)
        pkt.write_QUInt32(max_schema)
        pkt.write_QString(version)
        pkt.write_QString(revision)
        return bytes(pkt.packet)

class StatusPacket(GenericWSJTXPacket):
    TYPE_VALUE = STATUS

    def __init__(self, addr_port, magic, schema, pkt_type, id, pkt):
        super().__init__(addr_port, magic, schema, pkt_type, id, pkt)
        ps = PacketReader(pkt)
        _ = ps.QUInt32()
        self.wsjtx_id = ps.QString()
        self.dial_frequency = ps.QUInt64()
        self.mode = ps.QString()
        self.dx_call = ps.QString()
        self.report = ps.QString()
        self.tx_mode = ps.QString()
        self.tx_enabled = ps.QBool()
        self.transmitting = ps.QBool()
        self.decoding = ps.QBool()
        self.rx_df = ps.QInt32()
        self.tx_df = ps.QInt32()
        self.de_call = ps.QString()
        self.de_grid = ps.QString()
        self.dx_grid = ps.QString()
        self.tx_watchdog = ps.QBool()
        self.sub_mode = ps.QString()
        self.fast_mode = ps.QBool()

        """
            Fields added by later WSJT-X releases, older encoders stop here
        """
        self.special_op_mode = ps.QUInt8() if ps.remaining() >= 1 else None
        self.frequency_tolerance = ps.QUInt32() if ps.remaining() >= 4 else None
        self.tr_period = ps.QUInt32() if ps.remaining() >= 4 else None
        self.config_name = ps.QString() if ps.remaining() >= 4 else None

    def __repr__(self):
        str_repr = f'StatusPacket: from {self.addr_port} wsjtx id:{self.wsjtx_id}\n'
        str_repr += f'\tde_call:{self.de_call}\tde_grid:{self.de_grid}\tdial_frequency:{self.dial_frequency}\tmode:{self.mode}\n'
        str_repr += f'\tdx_call:{self.dx_call}\treport:{self.report}\ttx_enabled:{self.tx_enabled}\ttransmitting:{self.transmitting}'
        return str_repr

class DecodePacket(GenericWSJTXPacket):
    TYPE_VALUE = DECODE

    def __init__(self, addr_port, magic, schema, pkt_type, id, pkt):
        super().__init__(addr_port, magic, schema, pkt_type, id, pkt)
        ps = PacketReader(pkt)
        _ = ps.QUInt32()
        self.wsjtx_id = ps.QString()
        self.new_decode = ps.QBool()
        self.millis_since_midnight = ps.QTime()
        self.time = PacketUtil.midnight_utc() + datetime.timedelta(milliseconds=self.millis_since_midnight)
        self.snr = ps.QInt32()
        self.delta_t = ps.QFloat()
        self.delta_f = ps.QUInt32()
        self.mode = ps.QString()
        self.message = ps.QString()
        self.low_confidence = ps.QBool()
        self.off_air = ps.QBool() if ps.remaining() >= 1 else False

        calls = extract_callsigns(self.message)
        self.dx_call = calls['dx_call']
        self.de_call = calls['de_call']

    def __repr__(self):
        str_repr = f'DecodePacket: from {self.addr_port} wsjtx id:{self.wsjtx_id}\tmessage:{self.message}\n'
        str_repr += f'\tnew:{self.new_decode}\ttime:{self.time}\tsnr:{self.snr}\tdelta_t:{self.delta_t}\tdelta_f:{self.delta_f}\tmode:{self.mode}'
        return str_repr

class ClearPacket(GenericWSJTXPacket):
    TYPE_VALUE = CLEAR

    def __init__(self, addr_port, magic, schema, pkt_type, id, pkt):
        super().__init__(addr_port, magic, schema, pkt_type, id, pkt)
        ps = PacketReader(pkt)
        _ = ps.QUInt32()
        self.wsjtx_id = ps.QString()
        # 0 = Band Activity, 1 = Rx Frequency, 2 = both
        self.window = ps.QUInt8() if ps.remaining() >= 1 else 2

class ReplyPacket(GenericWSJTXPacket):
    TYPE_VALUE = REPLY

    def __init__(self, addr_port, magic, schema, pkt_type, id, pkt):
        super().__init__(addr_port, magic, schema, pkt_type, id, pkt)
        ps = PacketReader(pkt)
        _ = ps.QUInt32()
        self.wsjtx_id = ps.QString()
        self.millis_since_midnight = ps.QTime()
        self.snr = ps.QInt32()
        self.delta_t = ps.QFloat()
        self.delta_f = ps.QUInt32()
        self.mode = ps.QString()
        self.message = ps.QString()
        self.low_confidence = ps.QBool()
        self.modifiers = ps.QUInt8()

    @classmethod
    def Builder(cls, to_wsjtx_id, decode, modifiers=0):
        """
            Same as a double click on the decode in WSJT-X.
            modifiers: 0 = none, 2 = Shift, 4 = Ctrl, 8 = Alt
        """
        pkt = PacketWriter(cls.TYPE_VALUE, to_wsjtx_id)
        pkt.write_QTime(decode.millis_since_midnight)
        pkt.write_QInt32(decode.snr)
        pkt.write_QFloat(decode.delta_t)
        pkt.write_QUInt32(decode.delta_f)
        pkt.write_QString(decode.mode)
        pkt.write_QString(decode.message)
        pkt.write_QBool(getattr(decode, 'low_confidence', False))
        pkt.write_QUInt8(modifiers or 0)
        return bytes(pkt.packet)

class QSOLoggedPacket(GenericWSJTXPacket):
    TYPE_VALUE = QSO_LOGGED

    def __init__(self, addr_port, magic, schema, pkt_type, id, pkt):
        super().__init__(addr_port, magic, schema, pkt_type, id, pkt)
        ps = PacketReader(pkt)
        _ = ps.QUInt32()
        self.wsjtx_id = ps.QString()
        self.datetime_off = ps.QDateTime()
        self.call = ps.QString()
        self.grid = ps.QString()
        self.frequency = ps.QUInt64()
        self.mode = ps.QString()
        self.report_sent = ps.QString()
        self.report_recv = ps.QString()
        self.tx_power = ps.QString()
        self.comments = ps.QString()
        self.name = ps.QString()
        self.datetime_on = ps.QDateTime()
        self.op_call = ps.QString()
        self.my_call = ps.QString()
        self.my_grid = ps.QString()
        self.exchange_sent = ps.QString() if ps.remaining() >= 4 else ''
        self.exchange_recv = ps.QString() if ps.remaining() >= 4 else ''

    def __repr__(self):
        str_repr = f'QSOLoggedPacket: from {self.addr_port} wsjtx id:{self.wsjtx_id}\n'
        str_repr += f'\tcall:{self.call}\tgrid:{self.grid}\tfrequency:{self.frequency}\tmode:{self.mode}\n'
        str_repr += f'\tdatetime_on:{self.datetime_on}\tdatetime_off:{self.datetime_off}\treport_sent:{self.report_sent}\treport_recv:{self.report_recv}'
        return str_repr

class ClosePacket(GenericWSJTXPacket):
    TYPE_VALUE = CLOSE

class HaltTxPacket(GenericWSJTXPacket):
    TYPE_VALUE = HALT_TX

    def __init__(self, addr_port, magic, schema, pkt_type, id, pkt):
        super().__init__(addr_port, magic, schema, pkt_type, id, pkt)
        ps = PacketReader(pkt)
        _ = ps.QUInt32()
        self.wsjtx_id = ps.QString()
        self.auto_tx_only = ps.QBool()

    @classmethod
    def Builder(cls, to_wsjtx_id, auto_tx_only=True):
        pkt = PacketWriter(cls.TYPE_VALUE, to_wsjtx_id)
        pkt.write_QBool(auto_tx_only)
        return bytes(pkt.packet)

class LoggedADIFPacket(GenericWSJTXPacket):
    TYPE_VALUE = LOGGED_ADIF

    def __init__(self, addr_port, magic, schema, pkt_type, id, pkt):
        super().__init__(addr_port, magic, schema, pkt_type, id, pkt)
        ps = PacketReader(pkt)
        _ = ps.QUInt32()
        self.wsjtx_id = ps.QString()
        self.adif_text = ps.QString()

class HighlightCallsignPacket(GenericWSJTXPacket):
    TYPE_VALUE = HIGHLIGHT_CALLSIGN

    def __init__(self, addr_port, magic, schema, pkt_type, id, pkt):
        super().__init__(addr_port, magic, schema, pkt_type, id, pkt)
        ps = PacketReader(pkt)
        _ = ps.QUInt32()
        self.wsjtx_id = ps.QString()
        self.callsign = ps.QString()
        self.background_color = ps.QColor()
        self.foreground_color = ps.QColor()
        self.highlight_last = ps.QBool()

    @classmethod
    def Builder(cls, to_wsjtx_id, callsign, background_color=None, foreground_color=None, highlight_last=False):
        pkt = PacketWriter(cls.TYPE_VALUE, to_wsjtx_id)
        pkt.write_QString(callsign)
        pkt.write_QColor(background_color)
        pkt.write_QColor(foreground_color)
        pkt.write_QBool(highlight_last)
        return bytes(pkt.packet)

class WSJTXPacketClassFactory(GenericWSJTXPacket):
    PACKET_TYPE_TO_OBJ_MAP = {
        HeartBeatPacket.TYPE_VALUE          : HeartBeatPacket,
        StatusPacket.TYPE_VALUE             : StatusPacket,
        DecodePacket.TYPE_VALUE             : DecodePacket,
        ClearPacket.TYPE_VALUE              : ClearPacket,
        ReplyPacket.TYPE_VALUE              : ReplyPacket,
        QSOLoggedPacket.TYPE_VALUE          : QSOLoggedPacket,
        ClosePacket.TYPE_VALUE              : ClosePacket,
        HaltTxPacket.TYPE_VALUE             : HaltTxPacket,
        LoggedADIFPacket.TYPE_VALUE         : LoggedADIFPacket,
        HighlightCallsignPacket.TYPE_VALUE  : HighlightCallsignPacket,
    }

    @classmethod
    def from_udp_packet(cls, addr_port, udp_packet):
        if len(udp_packet) < GenericWSJTXPacket.MINIMUM_NETWORK_MESSAGE_SIZE:
            raise PacketError(f'Packet too short ({len(udp_packet)} bytes)')

        magic, schema, pkt_type = struct.unpack('>LLL', udp_packet[0:12])
        if magic != GenericWSJTXPacket.MAGIC_NUMBER:
            raise MagicNumberError(f'Bad magic number 0x{magic:08x}')

        ps = PacketReader(udp_packet)
        _ = ps.QUInt32()
        wsjtx_id = ps.QString()

        klass = cls.PACKET_TYPE_TO_OBJ_MAP.get(pkt_type, GenericWSJTXPacket)
        return klass(addr_port, magic, schema, pkt_type, wsjtx_id, udp_packet)
