# wsjtx_packet_sender.py

import argparse
import datetime
import socket
import sys

from datetime import timezone

from logger import get_logger
from wsjtx_packets import (
    PacketWriter,
    PacketUtil,
    HEARTBEAT,
    STATUS,
    DECODE,
    CLEAR,
    QSO_LOGGED,
    CLOSE,
    LOGGED_ADIF
)

from constants import (
    DEFAULT_UDP_PORT
)

log = get_logger(__name__)

class WSJTXPacketSender:
    """
        Builds frames the way WSJT-X emits them, handy to feed a running
        listener without a radio. build_* methods return the raw bytes,
        send_* methods also push them over UDP.
    """
    def __init__(self, ip_address='127.0.0.1', udp_port=DEFAULT_UDP_PORT, wsjtx_id='WSJT-X'):
        self.ip_address = ip_address
        self.udp_port   = udp_port
        self.wsjtx_id   = wsjtx_id

    def send_packet(self, packet_data):
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.sendto(packet_data, (self.ip_address, self.udp_port))
        log.info(f"Packet sent to {self.ip_address}:{self.udp_port}\n{PacketUtil.hexdump(packet_data)}")

    def build_heartbeat_packet(self, max_schema=3, version='2.7.0', revision=''):
        pkt_writer = PacketWriter(HEARTBEAT, self.wsjtx_id)
        pkt_writer.write_QUInt32(max_schema)
        pkt_writer.write_QString(version)
        if revision is not None:
            pkt_writer.write_QString(revision)
        return bytes(pkt_writer.packet)

    def build_status_packet(
            self,
            dial_frequency      = 14_074_000,
            mode                = "FT8",
            dx_call             = "",
            report              = "",
            tx_mode             = "FT8",
            tx_enabled          = False,
            transmitting        = False,
            decoding            = True,
            rx_df               = 1500,
            tx_df               = 1500,
            de_call             = "N0CALL",
            de_grid             = "FN42",
            dx_grid             = "",
            tx_watchdog         = False,
            sub_mode            = "",
            fast_mode           = False,
            special_op_mode     = 0,
            frequency_tolerance = None,
            tr_period           = None,
            config_name         = None
        ):
        pkt_writer = PacketWriter(STATUS, self.wsjtx_id)
        pkt_writer.write_QUInt64(dial_frequency)
        pkt_writer.write_QString(mode)
        pkt_writer.write_QString(dx_call)
        pkt_writer.write_QString(report)
        pkt_writer.write_QString(tx_mode)
        pkt_writer.write_QBool(tx_enabled)
        pkt_writer.write_QBool(transmitting)
        pkt_writer.write_QBool(decoding)
        pkt_writer.write_QInt32(rx_df)
        pkt_writer.write_QInt32(tx_df)
        pkt_writer.write_QString(de_call)
        pkt_writer.write_QString(de_grid)
        pkt_writer.write_QString(dx_grid)
        pkt_writer.write_QBool(tx_watchdog)
        pkt_writer.write_QString(sub_mode)
        pkt_writer.write_QBool(fast_mode)

        """
            Older WSJT-X releases stop right after fast_mode,
            leave trailing fields to None to mimic them
        """
        if special_op_mode is not None:
            pkt_writer.write_QUInt8(special_op_mode)
            if frequency_tolerance is not None:
                pkt_writer.write_QUInt32(frequency_tolerance)
                if tr_period is not None:
                    pkt_writer.write_QUInt32(tr_period)
                    if config_name is not None:
                        pkt_writer.write_QString(config_name)

        return bytes(pkt_writer.packet)

    def build_decode_packet(
            self,
            message,
            snr                     = 0,
            delta_t                 = 0.0,
            delta_f                 = 0,
            mode                    = "~",
            new_decode              = True,
            millis_since_midnight   = None,
            low_confidence          = False,
            off_air                 = False
        ):
        if millis_since_midnight is None:
            utcnow = datetime.datetime.now(timezone.utc)
            millis_since_midnight = int((utcnow - PacketUtil.midnight_utc()).total_seconds() * 1000)

        pkt_writer = PacketWriter(DECODE, self.wsjtx_id)
        pkt_writer.write_QBool(new_decode)
        pkt_writer.write_QTime(millis_since_midnight)
        pkt_writer.write_QInt32(snr)
        pkt_writer.write_QFloat(delta_t)
        pkt_writer.write_QUInt32(delta_f)
        pkt_writer.write_QString(mode)
        pkt_writer.write_QString(message)
        pkt_writer.write_QBool(low_confidence)
        if off_air is not None:
            pkt_writer.write_QBool(off_air)
        return bytes(pkt_writer.packet)

    def build_clear_packet(self, window=2):
        pkt_writer = PacketWriter(CLEAR, self.wsjtx_id)
        if window is not None:
            pkt_writer.write_QUInt8(window)
        return bytes(pkt_writer.packet)

    def build_qso_logged_packet(
            self,
            call,
            datetime_off    = None,
            grid            = "",
            frequency       = 14_074_000,
            mode            = "FT8",
            report_sent     = "-10",
            report_recv     = "-10",
            tx_power        = "",
            comments        = "",
            name            = "",
            datetime_on     = None,
            op_call         = "",
            my_call         = "N0CALL",
            my_grid         = "FN42",
            exchange_sent   = None,
            exchange_recv   = None
        ):
        if datetime_off is None:
            datetime_off = datetime.datetime.now(timezone.utc).replace(microsecond=0)
        if datetime_on is None:
            datetime_on = datetime_off

        pkt_writer = PacketWriter(QSO_LOGGED, self.wsjtx_id)
        pkt_writer.write_QDateTime(datetime_off)
        pkt_writer.write_QString(call)
        pkt_writer.write_QString(grid)
        pkt_writer.write_QUInt64(frequency)
        pkt_writer.write_QString(mode)
        pkt_writer.write_QString(report_sent)
        pkt_writer.write_QString(report_recv)
        pkt_writer.write_QString(tx_power)
        pkt_writer.write_QString(comments)
        pkt_writer.write_QString(name)
        pkt_writer.write_QDateTime(datetime_on)
        pkt_writer.write_QString(op_call)
        pkt_writer.write_QString(my_call)
        pkt_writer.write_QString(my_grid)
        if exchange_sent is not None:
            pkt_writer.write_QString(exchange_sent)
            pkt_writer.write_QString(exchange_recv or "")
        return bytes(pkt_writer.packet)

    def build_close_packet(self):
        return bytes(PacketWriter(CLOSE, self.wsjtx_id).packet)

    def build_logged_adif_packet(self, adif_text):
        pkt_writer = PacketWriter(LOGGED_ADIF, self.wsjtx_id)
        pkt_writer.write_QString(adif_text)
        return bytes(pkt_writer.packet)

    def send_heartbeat_packet(self, **kwargs):
        self.send_packet(self.build_heartbeat_packet(**kwargs))

    def send_status_packet(self, **kwargs):
        self.send_packet(self.build_status_packet(**kwargs))

    def send_decode_packet(self, message, **kwargs):
        self.send_packet(self.build_decode_packet(message, **kwargs))

    def send_clear_packet(self, window=2):
        self.send_packet(self.build_clear_packet(window))

    def send_qso_logged_packet(self, call, **kwargs):
        self.send_packet(self.build_qso_logged_packet(call, **kwargs))

    def send_close_packet(self):
        self.send_packet(self.build_close_packet())

    def send_logged_adif_packet(self, adif_text):
        self.send_packet(self.build_logged_adif_packet(adif_text))

def parse_arguments(argv=None):
    parser = argparse.ArgumentParser(description='Send WSJT-X UDP packets.')
    parser.add_argument('packet_type', choices=['heartbeat', 'status', 'decode', 'clear', 'qso_logged', 'close', 'logged_adif'], help='Type of packet to send.')
    parser.add_argument('--ip_address', type=str, default='127.0.0.1', help='IP address to send the packet to.')
    parser.add_argument('--udp_port', type=int, default=DEFAULT_UDP_PORT, help='UDP port to send the packet to.')
    parser.add_argument('--wsjtx_id', type=str, default='WSJT-X', help='WSJT-X instance ID.')
    parser.add_argument('--message', type=str, help='Decode message, ie "CQ K1ABC FN42".')
    parser.add_argument('--snr', type=int, default=-10, help='Signal-to-noise ratio.')
    parser.add_argument('--delta_t', type=float, default=0.2, help='Delta time.')
    parser.add_argument('--delta_f', type=int, default=1200, help='Delta frequency.')
    parser.add_argument('--mode', type=str, default='FT8', help='Mode.')
    parser.add_argument('--frequency', type=int, default=14_074_000, help='Dial frequency in Hz.')
    parser.add_argument('--call', type=str, default='K1ABC', help='Callsign of the logged QSO.')
    parser.add_argument('--grid', type=str, default='', help='Grid locator of the logged QSO.')
    parser.add_argument('--my_call', type=str, default='N0CALL', help='My callsign.')
    parser.add_argument('--my_grid', type=str, default='FN42', help='My grid locator.')
    parser.add_argument('--adif', type=str, default='<call:5>K1ABC <eor>', help='ADIF record for logged_adif.')
    return parser.parse_args(argv)

def main(argv=None):
    args = parse_arguments(argv)
    sender = WSJTXPacketSender(args.ip_address, args.udp_port, args.wsjtx_id)

    if args.packet_type == 'heartbeat':
        sender.send_heartbeat_packet()
    elif args.packet_type == 'status':
        sender.send_status_packet(
            dial_frequency  = args.frequency,
            mode            = args.mode,
            tx_mode         = args.mode,
            de_call         = args.my_call,
            de_grid         = args.my_grid
        )
    elif args.packet_type == 'decode':
        if not args.message:
            log.error("Message is required for decode packet.")
            return 1
        sender.send_decode_packet(
            args.message,
            snr     = args.snr,
            delta_t = args.delta_t,
            delta_f = args.delta_f
        )
    elif args.packet_type == 'clear':
        sender.send_clear_packet()
    elif args.packet_type == 'qso_logged':
        sender.send_qso_logged_packet(
            args.call,
            grid        = args.grid,
            frequency   = args.frequency,
            mode        = args.mode,
            my_call     = args.my_call,
            my_grid     = args.my_grid
        )
    elif args.packet_type == 'close':
        sender.send_close_packet()
    elif args.packet_type == 'logged_adif':
        sender.send_logged_adif_packet(args.adif)

    return 0

if __name__ == "__main__":
    sys.exit(main())
