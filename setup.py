"""Mission control supervisor package setup configuration.

Defines package metadata, entry points, and installation requirements for
the mission control service. The service runs monitored takeoff, landing,
repositioning and waypoint missions on a MAVLink vehicle and bridges them
to a remote operator over MQTT.
"""

from setuptools import setup


package_name = "mission_control"


setup(
    name="mission-control",
    version="0.1.0",
    packages=[package_name],
    python_requires=">=3.10",
    install_requires=["setuptools", "pymavlink", "paho-mqtt>=2.0"],
    extras_require={"test": ["pytest"]},
    zip_safe=True,
    maintainer="Mission Control Developers",
    maintainer_email="dev@mission-control.local",
    description="Supervisor bridging operator commands on MQTT to a MAVLink vehicle.",
    license="proprietary",
    tests_require=["pytest"],
    entry_points={
        "console_scripts": [
            "mission_control = mission_control.main:main",
        ],
    },
)
