import secrets

def generate_room_name(doctor_id, patient_id) -> str:
    # Opaque to this service; the video provider only needs it to be unique
    suffix = secrets.token_hex(8)
    return f"room-{str(doctor_id)[:8]}-{str(patient_id)[:8]}-{suffix}"

def estimate_wait_minutes(position: int, avg_minutes: int, in_consultation: bool = False) -> int:
    if in_consultation:
        return 0
    return max(0, position - 1) * avg_minutes

def format_wait(minutes: int) -> str:
    return f"{minutes} mins"

