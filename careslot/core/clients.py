"""External collaborators, built once per process and passed in explicitly."""
from dataclasses import dataclass
from typing import Optional

from careslot.services.appointment_state import AppointmentStateMachine
from careslot.services.notification_service import Notifier
from careslot.services.payment_gateway import PaymentGateway, PaystackGateway
from careslot.services.payment_service import PaymentService
from careslot.services.video_service import DailyRoomProvisioner, RoomProvisioner


@dataclass
class Collaborators:
    payment_gateway: PaymentGateway
    room_provisioner: RoomProvisioner
    notifier: Notifier
    state_machine: AppointmentStateMachine
    payments: PaymentService


def build_collaborators(
    payment_gateway: Optional[PaymentGateway] = None,
    room_provisioner: Optional[RoomProvisioner] = None,
    notifier: Optional[Notifier] = None,
) -> Collaborators:
    payment_gateway = payment_gateway or PaystackGateway()
    room_provisioner = room_provisioner or DailyRoomProvisioner()
    notifier = notifier or Notifier()
    state_machine = AppointmentStateMachine(payment_gateway, room_provisioner, notifier)
    return Collaborators(
        payment_gateway=payment_gateway,
        room_provisioner=room_provisioner,
        notifier=notifier,
        state_machine=state_machine,
        payments=PaymentService(state_machine),
    )
