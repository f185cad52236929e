import math
import threading
import time

import pytest
from pymavlink import mavutil

from mission_control.geo_math import deg_to_rad
from mission_control.mavlink_vehicle import MavlinkVehicle
from mission_control.mission import MissionInitSettings, Waypoint
from mission_control.vehicle import AckResult, DisplayMode, FlightStatus, TelemetryTopic

MAV = mavutil.mavlink


class _FakeMav:
    def __init__(self) -> None:
        self.command_long_calls: list[tuple] = []
        self.param_set_calls: list[tuple] = []
        self.mission_count_calls: list[tuple] = []
        self.mission_item_int_calls: list[tuple] = []
        self.mission_clear_calls: list[tuple] = []
        self.global_setpoint_calls: list[tuple] = []
        self.local_setpoint_calls: list[tuple] = []
        self.attitude_calls: list[tuple] = []
        self.send_error: OSError | None = None
        self.on_command = None

    def command_long_send(self, *args) -> None:
        if self.send_error is not None:
            raise self.send_error
        self.command_long_calls.append(args)
        if self.on_command is not None:
            self.on_command(args)

    def param_set_send(self, *args) -> None:
        self.param_set_calls.append(args)

    def mission_count_send(self, *args) -> None:
        self.mission_count_calls.append(args)

    def mission_item_int_send(self, *args) -> None:
        self.mission_item_int_calls.append(args)

    def mission_clear_all_send(self, *args) -> None:
        self.mission_clear_calls.append(args)

    def set_position_target_global_int_send(self, *args) -> None:
        self.global_setpoint_calls.append(args)

    def set_position_target_local_ned_send(self, *args) -> None:
        self.local_setpoint_calls.append(args)

    def set_attitude_target_send(self, *args) -> None:
        self.attitude_calls.append(args)


class _FakeConnection:
    def __init__(self, device: str, kwargs: dict) -> None:
        self.device = device
        self.kwargs = kwargs
        self.mav = _FakeMav()
        self.inbox: list[object] = []
        self.closed = False

    def close(self) -> None:
        self.closed = True

    def recv_match(self, blocking: bool = False, timeout: float | None = None):
        if self.inbox:
            return self.inbox.pop(0)
        if blocking and timeout:
            time.sleep(min(timeout, 0.005))
        return None


class _FakeMessage:
    def __init__(self, kind: str, src_system: int = 1, **fields) -> None:
        self._kind = kind
        self._src_system = src_system
        for name, value in fields.items():
            setattr(self, name, value)

    def get_type(self) -> str:
        return self._kind

    def get_srcSystem(self) -> int:
        return self._src_system


def _ack(command: int, result: int = MAV.MAV_RESULT_ACCEPTED) -> _FakeMessage:
    return _FakeMessage("COMMAND_ACK", command=command, result=result)


def _heartbeat(custom_mode: int, armed: bool = True, **overrides) -> _FakeMessage:
    fields = {
        "type": MAV.MAV_TYPE_QUADROTOR,
        "base_mode": MAV.MAV_MODE_FLAG_SAFETY_ARMED if armed else 0,
        "custom_mode": custom_mode,
    }
    fields.update(overrides)
    return _FakeMessage("HEARTBEAT", **fields)


def _landed(state: int) -> _FakeMessage:
    return _FakeMessage("EXTENDED_SYS_STATE", landed_state=state)


def _position(**overrides) -> _FakeMessage:
    fields = {
        "lat": 473977420,
        "lon": 85455940,
        "alt": 488000,
        "relative_alt": 10000,
        "vx": 100,
        "vy": -50,
        "vz": -20,
    }
    fields.update(overrides)
    return _FakeMessage("GLOBAL_POSITION_INT", **fields)


def _vehicle(monkeypatch, **kwargs):
    connections: list[_FakeConnection] = []

    def _fake_connection(device: str, **conn_kwargs):
        conn = _FakeConnection(device, conn_kwargs)
        connections.append(conn)
        return conn

    monkeypatch.setattr(
        "mission_control.mavlink_vehicle.mavutil.mavlink_connection",
        _fake_connection,
    )
    vehicle = MavlinkVehicle(device="udpin:0.0.0.0:14550", **kwargs)
    return vehicle, connections[0]


def test_connection_uses_device_and_source_ids(monkeypatch) -> None:
    vehicle, conn = _vehicle(monkeypatch, baudrate=115200)

    assert conn.device == "udpin:0.0.0.0:14550"
    assert conn.kwargs == {"baud": 115200, "source_system": 245, "source_component": 190}

    vehicle.close()
    assert conn.closed


def test_wait_for_heartbeat(monkeypatch) -> None:
    vehicle, conn = _vehicle(monkeypatch)
    assert not vehicle.wait_for_heartbeat(0.05)

    conn.inbox.append(_heartbeat(4))
    assert vehicle.wait_for_heartbeat(0.5)


def test_arm_accepted_on_first_ack(monkeypatch) -> None:
    vehicle, conn = _vehicle(monkeypatch)
    conn.inbox.append(_ack(MAV.MAV_CMD_COMPONENT_ARM_DISARM))

    ack = vehicle.arm_motors(1.0)

    assert ack.ok
    call = conn.mav.command_long_calls[0]
    assert call[:5] == (1, 1, MAV.MAV_CMD_COMPONENT_ARM_DISARM, 0, 1.0)


def test_rejected_command_is_retried_with_confirmation(monkeypatch) -> None:
    vehicle, conn = _vehicle(monkeypatch)
    conn.inbox.extend(
        [
            _ack(MAV.MAV_CMD_COMPONENT_ARM_DISARM, MAV.MAV_RESULT_DENIED),
            _ack(MAV.MAV_CMD_COMPONENT_ARM_DISARM, MAV.MAV_RESULT_DENIED),
        ]
    )

    ack = vehicle.arm_motors(1.0)

    assert ack.result is AckResult.REJECTED
    assert ack.code == MAV.MAV_RESULT_DENIED
    assert [call[3] for call in conn.mav.command_long_calls] == [0, 1]


def test_missing_ack_times_out_after_retry(monkeypatch) -> None:
    vehicle, conn = _vehicle(monkeypatch)

    ack = vehicle.go_home(0.1)

    assert ack.result is AckResult.TIMEOUT
    assert len(conn.mav.command_long_calls) == 2


def test_ack_for_other_command_or_system_is_ignored(monkeypatch) -> None:
    vehicle, conn = _vehicle(monkeypatch)
    conn.inbox.extend(
        [
            _ack(MAV.MAV_CMD_NAV_LAND),
            _FakeMessage(
                "COMMAND_ACK",
                src_system=7,
                command=MAV.MAV_CMD_NAV_RETURN_TO_LAUNCH,
                result=MAV.MAV_RESULT_ACCEPTED,
            ),
        ]
    )

    assert vehicle.go_home(0.1).result is AckResult.TIMEOUT


def test_send_failure_is_reported_as_rejection(monkeypatch) -> None:
    vehicle, conn = _vehicle(monkeypatch)
    conn.mav.send_error = OSError("serial unplugged")

    ack = vehicle.issue_land(1.0)

    assert ack.result is AckResult.REJECTED
    assert ack.code == -1


def test_takeoff_sets_guided_arms_then_climbs(monkeypatch) -> None:
    vehicle, conn = _vehicle(monkeypatch, takeoff_altitude_m=2.5)
    conn.inbox.extend(
        [
            _ack(MAV.MAV_CMD_DO_SET_MODE),
            _ack(MAV.MAV_CMD_COMPONENT_ARM_DISARM),
            _ack(MAV.MAV_CMD_NAV_TAKEOFF, MAV.MAV_RESULT_IN_PROGRESS),
        ]
    )

    assert vehicle.issue_takeoff(1.0).ok
    commands = [call[2] for call in conn.mav.command_long_calls]
    assert commands == [
        MAV.MAV_CMD_DO_SET_MODE,
        MAV.MAV_CMD_COMPONENT_ARM_DISARM,
        MAV.MAV_CMD_NAV_TAKEOFF,
    ]
    assert conn.mav.command_long_calls[0][5] == 4.0
    assert conn.mav.command_long_calls[2][10] == 2.5


def test_snapshot_reflects_received_telemetry(monkeypatch) -> None:
    vehicle, conn = _vehicle(monkeypatch)
    conn.inbox.extend(
        [
            _heartbeat(4),
            _landed(MAV.MAV_LANDED_STATE_IN_AIR),
            _FakeMessage("GPS_RAW_INT", fix_type=3),
            _position(),
            _FakeMessage("ATTITUDE_QUATERNION", q1=0.5, q2=0.5, q3=0.5, q4=0.5),
            _FakeMessage(
                "RC_CHANNELS", chan1_raw=2000, chan2_raw=1000, chan3_raw=1500, chan4_raw=65535
            ),
            _position(src_system=3, lat=0, lon=0),
        ]
    )

    snapshot = vehicle.get_telemetry_snapshot()

    assert snapshot.status.flight is FlightStatus.IN_AIR
    assert snapshot.status.display_mode is DisplayMode.P_GPS
    assert snapshot.position.latitude == pytest.approx(deg_to_rad(47.397742))
    assert snapshot.position.longitude == pytest.approx(deg_to_rad(8.545594))
    assert snapshot.position.altitude == pytest.approx(488.0)
    assert snapshot.position.height == pytest.approx(10.0)
    assert snapshot.position.health == 3
    assert (snapshot.velocity.x, snapshot.velocity.y, snapshot.velocity.z) == pytest.approx(
        (1.0, -0.5, 0.2)
    )
    assert snapshot.attitude.w == 0.5
    assert (snapshot.rc.roll, snapshot.rc.pitch, snapshot.rc.throttle, snapshot.rc.yaw) == (
        10000,
        -10000,
        0,
        0,
    )


@pytest.mark.parametrize(
    "messages,flight,mode",
    [
        ([_heartbeat(4, armed=False), _landed(MAV.MAV_LANDED_STATE_ON_GROUND)], FlightStatus.STOPPED, DisplayMode.P_GPS),
        ([_heartbeat(9), _landed(MAV.MAV_LANDED_STATE_ON_GROUND)], FlightStatus.ON_GROUND, DisplayMode.P_GPS),
        ([_heartbeat(9), _landed(MAV.MAV_LANDED_STATE_LANDING)], FlightStatus.IN_AIR, DisplayMode.AUTO_LANDING),
        ([_heartbeat(4), _landed(MAV.MAV_LANDED_STATE_TAKEOFF)], FlightStatus.IN_AIR, DisplayMode.AUTO_TAKEOFF),
        ([_heartbeat(6), _landed(MAV.MAV_LANDED_STATE_IN_AIR)], FlightStatus.IN_AIR, DisplayMode.NAVI_GO_HOME),
        ([_heartbeat(2), _landed(MAV.MAV_LANDED_STATE_IN_AIR)], FlightStatus.IN_AIR, DisplayMode.ATTITUDE),
        ([_heartbeat(3), _landed(MAV.MAV_LANDED_STATE_IN_AIR)], FlightStatus.IN_AIR, DisplayMode.NAVI_SDK_CTRL),
        ([_heartbeat(0), _landed(MAV.MAV_LANDED_STATE_ON_GROUND)], FlightStatus.ON_GROUND, DisplayMode.MANUAL_CTRL),
    ],
)
def test_status_mapping(monkeypatch, messages, flight, mode) -> None:
    vehicle, conn = _vehicle(monkeypatch)
    conn.inbox.extend(messages)

    status = vehicle.get_telemetry_snapshot().status

    assert status.flight is flight
    assert status.display_mode is mode


def test_undefined_landed_state_uses_height(monkeypatch) -> None:
    vehicle, conn = _vehicle(monkeypatch)
    conn.inbox.extend([_heartbeat(5), _position(relative_alt=300)])
    assert vehicle.get_telemetry_snapshot().status.flight is FlightStatus.ON_GROUND

    conn.inbox.append(_position(relative_alt=4000))
    assert vehicle.get_telemetry_snapshot().status.flight is FlightStatus.IN_AIR


def test_gcs_heartbeat_does_not_change_status(monkeypatch) -> None:
    vehicle, conn = _vehicle(monkeypatch)
    conn.inbox.extend([_heartbeat(4), _heartbeat(0, armed=False, type=MAV.MAV_TYPE_GCS)])

    status = vehicle.get_telemetry_snapshot().status

    assert status.display_mode is DisplayMode.P_GPS
    assert status.flight is not FlightStatus.STOPPED


def test_subscribe_requests_each_message_once(monkeypatch) -> None:
    vehicle, conn = _vehicle(monkeypatch)
    conn.inbox.extend(
        [_ack(MAV.MAV_CMD_SET_MESSAGE_INTERVAL), _ack(MAV.MAV_CMD_SET_MESSAGE_INTERVAL)]
    )

    handle = vehicle.subscribe(
        [TelemetryTopic.STATUS_FLIGHT, TelemetryTopic.STATUS_DISPLAYMODE], 10.0
    )

    assert handle is not None
    assert handle.topics == (TelemetryTopic.STATUS_FLIGHT, TelemetryTopic.STATUS_DISPLAYMODE)
    assert len(conn.mav.command_long_calls) == 1
    call = conn.mav.command_long_calls[0]
    assert call[2] == MAV.MAV_CMD_SET_MESSAGE_INTERVAL
    assert call[4] == float(MAV.MAVLINK_MSG_ID_EXTENDED_SYS_STATE)
    assert call[5] == pytest.approx(100000.0)

    assert vehicle.unsubscribe(handle).ok
    assert conn.mav.command_long_calls[1][5] == 0.0


def test_rejected_subscription_restores_earlier_intervals(monkeypatch) -> None:
    vehicle, conn = _vehicle(monkeypatch)
    conn.inbox.extend(
        [
            _ack(MAV.MAV_CMD_SET_MESSAGE_INTERVAL),
            _ack(MAV.MAV_CMD_SET_MESSAGE_INTERVAL, MAV.MAV_RESULT_UNSUPPORTED),
            _ack(MAV.MAV_CMD_SET_MESSAGE_INTERVAL, MAV.MAV_RESULT_UNSUPPORTED),
            _ack(MAV.MAV_CMD_SET_MESSAGE_INTERVAL),
        ]
    )

    handle = vehicle.subscribe([TelemetryTopic.QUATERNION, TelemetryTopic.GPS_FUSED], 50.0)

    assert handle is None
    restore = conn.mav.command_long_calls[-1]
    assert restore[4] == float(MAV.MAVLINK_MSG_ID_ATTITUDE_QUATERNION)
    assert restore[5] == 0.0


def test_verify_subscription_uses_fresh_heartbeat(monkeypatch) -> None:
    vehicle, conn = _vehicle(monkeypatch)
    conn.inbox.append(_heartbeat(4))

    assert vehicle.verify_subscription()


def test_mission_upload_handshake(monkeypatch) -> None:
    vehicle, conn = _vehicle(monkeypatch)
    waypoints = [
        Waypoint(0, deg_to_rad(47.3977420), deg_to_rad(8.5455940), 10.0),
        Waypoint(1, deg_to_rad(47.3980000), deg_to_rad(8.5460000), 20.0),
    ]

    init = vehicle.init_mission(MissionInitSettings(idle_velocity=6.0, waypoint_count=2), 1.0)

    assert init.ok
    assert conn.mav.param_set_calls[0][2:4] == (b"WPNAV_SPEED", 600.0)
    assert conn.mav.mission_count_calls == [(1, 1, 2)]

    conn.inbox.append(_FakeMessage("MISSION_REQUEST_INT", seq=0))
    assert vehicle.upload_waypoint(waypoints[0], 1.0).ok

    conn.inbox.extend(
        [
            _FakeMessage("MISSION_REQUEST", seq=1),
            _FakeMessage("MISSION_ACK", type=MAV.MAV_MISSION_ACCEPTED),
        ]
    )
    assert vehicle.upload_waypoint(waypoints[1], 1.0).ok

    first, second = conn.mav.mission_item_int_calls
    assert first[2] == 0
    assert first[3] == MAV.MAV_FRAME_GLOBAL_RELATIVE_ALT_INT
    assert first[4] == MAV.MAV_CMD_NAV_WAYPOINT
    assert first[11] == 473977420
    assert first[12] == 85455940
    assert first[13] == 10.0
    assert second[2] == 1


def test_unrequested_waypoint_times_out(monkeypatch) -> None:
    vehicle, conn = _vehicle(monkeypatch)
    vehicle.init_mission(MissionInitSettings(waypoint_count=3), 1.0)
    conn.inbox.append(_FakeMessage("MISSION_REQUEST_INT", seq=2))

    ack = vehicle.upload_waypoint(Waypoint(1, 0.0, 0.0, 5.0), 0.1)

    assert ack.result is AckResult.TIMEOUT
    assert conn.mav.mission_item_int_calls == []


def test_rejected_mission_reports_ack_type(monkeypatch) -> None:
    vehicle, conn = _vehicle(monkeypatch)
    vehicle.init_mission(MissionInitSettings(waypoint_count=1), 1.0)
    conn.inbox.extend(
        [
            _FakeMessage("MISSION_REQUEST_INT", seq=0),
            _FakeMessage("MISSION_ACK", type=MAV.MAV_MISSION_NO_SPACE),
        ]
    )

    ack = vehicle.upload_waypoint(Waypoint(0, 0.0, 0.0, 5.0), 1.0)

    assert ack.result is AckResult.REJECTED
    assert ack.code == MAV.MAV_MISSION_NO_SPACE


def test_mission_request_read_by_snapshot_still_serves_upload(monkeypatch) -> None:
    vehicle, conn = _vehicle(monkeypatch)
    vehicle.init_mission(MissionInitSettings(waypoint_count=2), 1.0)
    conn.inbox.extend([_FakeMessage("MISSION_REQUEST_INT", seq=0), _position()])

    vehicle.get_telemetry_snapshot()
    assert conn.inbox == []

    assert vehicle.upload_waypoint(Waypoint(0, 0.0, 0.0, 5.0), 0.5).ok
    assert len(conn.mav.mission_item_int_calls) == 1


def test_stale_ack_does_not_answer_new_command(monkeypatch) -> None:
    vehicle, conn = _vehicle(monkeypatch)
    conn.inbox.append(_ack(MAV.MAV_CMD_COMPONENT_ARM_DISARM))
    vehicle.get_telemetry_snapshot()

    ack = vehicle.arm_motors(0.1)

    assert ack.result is AckResult.TIMEOUT
    assert len(conn.mav.command_long_calls) == 2


def test_acks_survive_concurrent_telemetry_reads(monkeypatch) -> None:
    vehicle, conn = _vehicle(monkeypatch)
    attitude = _FakeMessage("ATTITUDE_QUATERNION", q1=1.0, q2=0.0, q3=0.0, q4=0.0)

    def reply(args) -> None:
        conn.inbox.extend([attitude, _ack(args[2]), attitude])

    conn.mav.on_command = reply
    stop = threading.Event()

    def poll_telemetry() -> None:
        while not stop.is_set():
            vehicle.get_telemetry_snapshot()
            stop.wait(0.001)

    poller = threading.Thread(target=poll_telemetry)
    poller.start()
    try:
        acks = [vehicle.arm_motors(1.0) for _ in range(30)]
    finally:
        stop.set()
        poller.join()

    assert all(ack.ok for ack in acks)
    assert len(conn.mav.command_long_calls) == 30


def test_stop_mission_holds_then_clears(monkeypatch) -> None:
    vehicle, conn = _vehicle(monkeypatch)
    conn.inbox.append(_ack(MAV.MAV_CMD_DO_SET_MODE))

    assert vehicle.stop_mission(1.0).ok
    assert conn.mav.command_long_calls[0][5] == 5.0
    assert conn.mav.mission_clear_calls == [(1, 1)]


def test_pause_and_resume_use_pause_continue(monkeypatch) -> None:
    vehicle, conn = _vehicle(monkeypatch)
    conn.inbox.extend(
        [_ack(MAV.MAV_CMD_DO_PAUSE_CONTINUE), _ack(MAV.MAV_CMD_DO_PAUSE_CONTINUE)]
    )

    assert vehicle.pause_mission(1.0).ok
    assert vehicle.resume_mission(1.0).ok
    assert [call[4] for call in conn.mav.command_long_calls] == [0.0, 1.0]


def test_position_setpoint_is_offset_from_current_position(monkeypatch) -> None:
    vehicle, conn = _vehicle(monkeypatch)
    conn.inbox.append(_position())
    vehicle.get_telemetry_snapshot()

    vehicle.set_position_and_yaw(0.0, 0.0, 500.0, 90.0)

    call = conn.mav.global_setpoint_calls[0]
    assert call[3] == MAV.MAV_FRAME_GLOBAL_INT
    assert call[5] == 473977420
    assert call[6] == 85455940
    assert call[7] == 500.0
    assert call[14] == pytest.approx(math.pi / 2)


def test_brake_commands_zero_body_velocity(monkeypatch) -> None:
    vehicle, conn = _vehicle(monkeypatch)

    vehicle.emergency_brake()

    call = conn.mav.local_setpoint_calls[0]
    assert call[3] == MAV.MAV_FRAME_BODY_OFFSET_NED
    assert call[5:11] == (0.0,) * 6


def test_attitude_setpoint_thrust_tracks_height(monkeypatch) -> None:
    vehicle, conn = _vehicle(monkeypatch)
    conn.inbox.append(_position(relative_alt=0))
    vehicle.get_telemetry_snapshot()

    vehicle.set_attitude_and_vertical_position(0.0, 0.0, 100.0, 0.0)
    vehicle.set_attitude_and_vertical_position(0.0, 0.0, 0.0, 0.0)

    assert conn.mav.attitude_calls[0][-1] == pytest.approx(0.7)
    assert conn.mav.attitude_calls[1][-1] == pytest.approx(0.5)
    assert conn.mav.attitude_calls[0][4] == pytest.approx([1.0, 0.0, 0.0, 0.0])
