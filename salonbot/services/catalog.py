"""
Static fallback catalog.

Hand-maintained copy of the salon's services and profile, served only when
the booking site cannot be reached and nothing is cached. Built once at
import; lookups never touch the network and never raise.

Availability has no static equivalent: the fallback is an empty day list
and the reply points the client at the booking link instead.
"""

from salonbot.core.config import settings
from salonbot.schemas import BusinessInfo, DaySlots, ServiceItem, StaffMember

STAFF_NAME = "Tatiana Orozco"

KNOWN_SERVICES: tuple[ServiceItem, ...] = (
    ServiceItem(
        id=8322085,
        name="Diagnóstico capilar : curly hair",
        price="$0",
        duration_minutes=30,
        category="consultation",
        description="Curly hair consultation and diagnosis for new clients to understand their hair type and needs.",
        staff=[STAFF_NAME],
    ),
    ServiceItem(
        id=7132273,
        name="Curly Adventure (First Time)",
        price="$200",
        duration_minutes=150,
        category="curly",
        description="Complete curly hair transformation for new clients. Includes consultation, cut, and styling.",
        staff=[STAFF_NAME],
    ),
    ServiceItem(
        id=7132274,
        name="Curly Adventure (Regular client)",
        price="$180",
        duration_minutes=150,
        category="curly",
        description="Comprehensive curly hair service for returning clients.",
        staff=[STAFF_NAME],
    ),
    ServiceItem(
        id=7132275,
        name="Curly Cut + Simple Definition",
        price="$150",
        duration_minutes=90,
        category="curly",
        description="Curly haircut with styling and definition for regular maintenance.",
        staff=[STAFF_NAME],
    ),
    ServiceItem(
        id=7132276,
        name="Deep Wash and Style Only",
        price="$150",
        duration_minutes=90,
        category="curly",
        description="Deep cleansing wash and styling without cut.",
        staff=[STAFF_NAME],
    ),
    ServiceItem(
        id=7132277,
        name="Curly Color Experience",
        price="$250",
        duration_minutes=150,
        category="color",
        description="Color treatment designed for curly hair.",
        staff=[STAFF_NAME],
    ),
    ServiceItem(
        id=7132278,
        name="Scalp treatment, Masaje chino capilar",
        price="$140",
        duration_minutes=90,
        category="treatment",
        description="Chinese scalp massage and treatment for curly hair health.",
        staff=[STAFF_NAME],
    ),
    ServiceItem(
        id=7132279,
        name="Curly Spa Service (Hair Growth Treatment)",
        price="$180",
        duration_minutes=210,
        category="treatment",
        description="Intensive spa treatment promoting healthy hair growth for curly hair.",
        staff=[STAFF_NAME],
    ),
    ServiceItem(
        id=7132280,
        name="Airbrush Makeup and Hair style for Bride",
        price="$300",
        duration_minutes=120,
        category="special",
        description="Bridal package with airbrush makeup and hair styling.",
        staff=[STAFF_NAME],
    ),
)

BUSINESS_PROFILE = BusinessInfo(
    id=settings.BUSINESS_ID,
    name="Akro Beauty by La Morocha Makeup",
    address="8865 Commodity Circle, Suite 7A, Orlando, 32819",
    booking_url=settings.BOOKING_PAGE_URL,
    staff=[StaffMember(id=settings.STAFFER_ID, name=STAFF_NAME)],
    specialties=[
        "Curly hair expert (Especialista en Cabello rizado)",
        "Hair color and treatments",
        "Scalp treatments",
        "Bridal hair and makeup",
    ],
)

NO_AVAILABILITY: tuple[DaySlots, ...] = ()


def services_fallback(_key: str) -> list[ServiceItem]:
    return list(KNOWN_SERVICES)


def business_fallback(_key: str) -> BusinessInfo:
    return BUSINESS_PROFILE


def availability_fallback(_key: str) -> list[DaySlots]:
    return list(NO_AVAILABILITY)

