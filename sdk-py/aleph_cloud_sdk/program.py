"""
Serverless programs (functions)
"""

import io
import logging
import zipfile
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Union

import requests

from .clients import MessageClient, PricingOracle, require_signer
from .config import SDKConfig
from .constants import DEFAULT_ENTRYPOINT, DEFAULT_PROGRAM_CHANNEL, FUNCTION_RUNTIMES
from .cost import CostSummary, ExecutionCostProps
from .domain import DomainManager
from .entities import Program
from .errors import CustomRuntimeNeeded, InvalidCodeFile, InvalidCodeType, InvalidResponse
from .executable import ExecutableManager
from .fields import DomainField, EnvVarField, PaymentConfig, Specs, VolumeField, as_list
from .http import new_session
from .payment import PaymentStreamCoordinator
from .selector import NodeSelector
from .steps import StepGenerator, StepSequence
from .volume import VolumeManager

logger = logging.getLogger(__name__)

CodeType = Literal["text", "file", "ref"]

# Stands in for the code volume when pricing a draft
MOCK_PROGRAM_REF = "79f19811f8e843f37ff7535f634b89504da3d8f03e1f0af109d1791cf6add7af"

CODE_EXTENSIONS = {"python": "py", "javascript": "js"}
FILE_ENCODINGS = {".zip": "zip", ".sqsh": "squashfs"}


@dataclass(frozen=True)
class CodeField:
    """
    Code of a program: inline source, an archive to upload, or an already
    stored code volume.
    """

    type: CodeType
    lang: str = "python"
    text: Optional[str] = None
    file: Optional[bytes] = None
    file_name: Optional[str] = None
    entrypoint: Optional[str] = None
    encoding: Optional[str] = None
    program_ref: Optional[str] = None

    @classmethod
    def from_text(cls, text: str, lang: str = "python") -> "CodeField":
        return cls(type="text", lang=lang, text=text)

    @classmethod
    def from_file(cls, file: bytes, file_name: str, entrypoint: str, lang: str = "python") -> "CodeField":
        return cls(type="file", lang=lang, file=file, file_name=file_name, entrypoint=entrypoint)

    @classmethod
    def from_ref(cls, program_ref: str, entrypoint: str, encoding: str = "zip", lang: str = "python") -> "CodeField":
        return cls(type="ref", lang=lang, program_ref=program_ref, entrypoint=entrypoint, encoding=encoding)


@dataclass(frozen=True)
class ProgramRequest:
    code: CodeField
    specs: Specs
    name: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    runtime: Optional[str] = None
    is_persistent: bool = False
    env_vars: List[EnvVarField] = field(default_factory=list)
    volumes: List[VolumeField] = field(default_factory=list)
    domains: List[DomainField] = field(default_factory=list)
    payment: Optional[PaymentConfig] = None


def zip_source(text: str, lang: str) -> bytes:
    """Single-file archive holding main.py (or main.js) with the given source."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
        archive.writestr(f"main.{CODE_EXTENSIONS.get(lang, 'js')}", text)
    return buffer.getvalue()


def parse_code(code: CodeField) -> Dict[str, Any]:
    """
    Code section of a program message.

    Raises:
        InvalidCodeFile: missing archive, or not a .zip/.sqsh file
        InvalidCodeType: unknown code type
    """
    if code.type == "text":
        return {
            "entrypoint": DEFAULT_ENTRYPOINT,
            "file": zip_source(code.text or "", code.lang),
            "encoding": "zip",
        }

    if code.type == "file":
        if not code.file or not code.file_name:
            raise InvalidCodeFile()
        for extension, encoding in FILE_ENCODINGS.items():
            if code.file_name.endswith(extension):
                return {"entrypoint": code.entrypoint, "file": code.file, "encoding": encoding}
        raise InvalidCodeFile()

    if code.type == "ref":
        return {"entrypoint": code.entrypoint, "encoding": code.encoding, "program_ref": code.program_ref}

    raise InvalidCodeType()


def parse_runtime(request: ProgramRequest) -> str:
    if request.runtime:
        return request.runtime
    runtime = FUNCTION_RUNTIMES.get(request.code.lang)
    if runtime is None:
        raise CustomRuntimeNeeded()
    return runtime


class ProgramManager(ExecutableManager[Program]):
    entity_type = "program"
    message_type = "PROGRAM"

    def __init__(
        self,
        client: MessageClient,
        pricing: PricingOracle,
        volume_manager: VolumeManager,
        domain_manager: DomainManager,
        node_selector: NodeSelector,
        payments: PaymentStreamCoordinator,
        channel: str = DEFAULT_PROGRAM_CHANNEL,
        account: Any = None,
        config: Optional[SDKConfig] = None,
        session: Optional[requests.Session] = None,
    ):
        super().__init__(client, pricing, volume_manager, domain_manager, node_selector, payments, channel, account)
        self.config = config or SDKConfig()
        self.session = session or new_session()

    # Reads

    def get_all(self) -> List[Program]:
        if self.account is None:
            return []
        try:
            response = self.client.get_messages(
                addresses=[self.account.address],
                message_types=[self.message_type],
                channels=[self.channel],
            )
        except Exception as e:
            logger.warning("could not list programs of %s: %s", self.account.address, e)
            return []
        return self.parse_messages(response.get("messages") or [])

    def get(self, entity_id: str) -> Optional[Program]:
        programs = self.parse_messages([self.client.get_message(entity_id)])
        return programs[0] if programs else None

    def parse_messages(self, messages: List[Dict[str, Any]]) -> List[Program]:
        sizes = self.volume_manager.sizes_map()
        programs = []
        for message in messages:
            if message.get("content") is None:
                continue
            program = Program.from_message(message)
            size = sizes.get(program.code.get("ref"), 0)
            for volume in program.volumes:
                size += volume["size_mib"] if "size_mib" in volume else sizes.get(volume.get("ref"), 0)
            program.size = size
            programs.append(program)
        return programs

    def download(self, program: Program) -> bytes:
        """Raw code archive of a published program."""
        store = self.client.get_message(program.code["ref"])
        file_hash = (store.get("content") or {}).get("item_hash")
        if not file_hash:
            raise InvalidResponse("code volume")
        response = self.session.get(
            f"{self.config.api_server}/api/v0/storage/raw/{file_hash}",
            timeout=self.config.http_timeout,
        )
        response.raise_for_status()
        return response.content

    def get_stream_payment_details(self, *args: Any) -> None:
        return None

    # Plans

    def get_add_steps(self, request: ProgramRequest) -> List[str]:
        steps: List[str] = []
        steps += self.volume_manager.get_add_steps(request.volumes)
        steps.append("program")
        steps += self.get_domain_add_steps(request.domains)
        return steps

    def get_del_steps(self, programs: Any) -> List[str]:
        steps: List[str] = []
        for program_or_id in as_list(programs):
            program = self.ensure(program_or_id)
            if program.code.get("ref"):
                steps.append("volumeDel")
            steps.append("programDel")
        return steps

    # Workflows

    def add_steps(self, request: ProgramRequest) -> StepSequence[Program]:
        return StepSequence(self._add, request)

    def add(self, request: ProgramRequest) -> Program:
        return self.add_steps(request).run()

    def del_steps(self, programs: Union[str, Program, List[Union[str, Program]]]) -> StepSequence[None]:
        return StepSequence(self._del, as_list(programs))

    def delete(self, programs: Union[str, Program, List[Union[str, Program]]]) -> None:
        self.del_steps(programs).run()

    def get_cost(self, request: ProgramRequest) -> CostSummary:
        payment_method = "stream" if request.payment is not None and request.payment.is_stream else "hold"
        config = self.parse_program_for_cost_estimation(request)
        props = ExecutionCostProps(
            entity_type="program",
            cpu=request.specs.cpu,
            ram=request.specs.ram,
            volumes=config.get("volumes") or [],
            domains=[domain.name for domain in request.domains],
            is_persistent=request.is_persistent,
        )
        return self.estimate_cost(config, props, payment_method)

    # Message content

    def parse_program_for_cost_estimation(self, request: ProgramRequest) -> Dict[str, Any]:
        config: Dict[str, Any] = {
            "channel": self.channel,
            "runtime": parse_runtime(request),
            "persistent": request.is_persistent,
            "entrypoint": request.code.entrypoint or DEFAULT_ENTRYPOINT,
            "encoding": "zip",
            "program_ref": MOCK_PROGRAM_REF,
            "payment": self.parse_payment_for_cost_estimation(request.payment),
        }
        config.update(self.parse_specs(request.specs) or {})
        volumes = self.parse_volumes_for_cost_estimation(request.volumes)
        if volumes:
            config["volumes"] = volumes
        return config

    def parse_program_steps(self, request: ProgramRequest, results: Dict[str, Any]) -> StepGenerator[Dict[str, Any]]:
        runtime = parse_runtime(request)
        payment = self.parse_payment(request.payment)
        code = parse_code(request.code)

        config: Dict[str, Any] = {
            "channel": self.channel,
            "runtime": runtime,
            "persistent": request.is_persistent,
            "metadata": self.parse_metadata(request.name, request.tags),
            "payment": payment,
        }
        config.update(self.parse_specs(request.specs) or {})
        variables = self.parse_env_vars(request.env_vars)
        if variables:
            config["variables"] = variables

        volumes = yield from self.parse_volumes_steps(request.volumes, results)
        if volumes:
            config["volumes"] = volumes

        config.update(code)
        return config

    def _add(self, request: ProgramRequest, results: Dict[str, Any]) -> StepGenerator[Program]:
        signer = require_signer(self.client)
        config = yield from self.parse_program_steps(request, results)

        yield "program"

        response = signer.create_program(config)
        if not response or not response.get("item_hash"):
            raise InvalidResponse("program message")
        program = Program.from_message(response)
        results["program"] = program
        logger.info("published program %s", program.id)

        domains = yield from self.parse_domains_steps(program.id, request.domains)
        if domains:
            results["domain"] = domains
        return program

    def _del(self, programs: List[Union[str, Program]], results: Dict[str, Any]) -> StepGenerator[None]:
        signer = require_signer(self.client)

        for program_or_id in programs:
            program = self.ensure(program_or_id)

            code_ref = program.code.get("ref")
            if code_ref:
                yield from self.volume_manager.del_steps(code_ref)

            yield "programDel"
            results.setdefault("programDel", []).append(signer.forget(self.channel, [program.id]))

        return None
