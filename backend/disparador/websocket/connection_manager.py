# disparador/websocket/connection_manager.py
from typing import Any, Dict, Optional, Set

from fastapi import WebSocket
from loguru import logger

class ConnectionManager:
    """
    Conexões WebSocket agrupadas em salas ("company:{id}", "session:{id}").
    Eventos saem no formato {"event": ..., "data": ...}.
    """

    def __init__(self):
        self.active_connections: Dict[str, WebSocket] = {}
        self.rooms: Dict[str, Set[str]] = {}

    async def connect(self, client_id: str, websocket: WebSocket):
        await websocket.accept()
        self.active_connections[client_id] = websocket
        logger.info(f"Cliente {client_id} conectado via WebSocket.")

    def disconnect(self, client_id: str):
        if client_id in self.active_connections:
            self.active_connections.pop(client_id)
            logger.info(f"Cliente {client_id} desconectado do WebSocket.")
        for room in list(self.rooms):
            self.leave(client_id, room)

    def join(self, client_id: str, room: str):
        self.rooms.setdefault(room, set()).add(client_id)
        logger.debug(f"Cliente {client_id} entrou na sala {room}.")

    def leave(self, client_id: str, room: str):
        members = self.rooms.get(room)
        if not members:
            return
        members.discard(client_id)
        if not members:
            self.rooms.pop(room, None)

    def room_members(self, room: str) -> Set[str]:
        return set(self.rooms.get(room, set()))

    async def send_message(self, client_id: str, message: dict) -> bool:
        websocket = self.active_connections.get(client_id)
        if websocket is None:
            logger.warning(f"Cliente {client_id} não encontrado para envio de mensagem.")
            return False
        try:
            await websocket.send_json(message)
            return True
        except Exception as e:
            logger.error(f"Erro ao enviar mensagem para {client_id}: {e}")
            return False

    async def emit(self, room: str, event: str, data: Optional[Dict[str, Any]] = None):
        """Envia o evento para todos os clientes da sala."""
        message = {"event": event, "data": data or {}}
        disconnected_clients = []
        for client_id in self.room_members(room):
            if not await self.send_message(client_id, message):
                disconnected_clients.append(client_id)

        # Remove clientes desconectados
        for client_id in disconnected_clients:
            self.disconnect(client_id)
            logger.warning(f"Removendo cliente desconectado: {client_id}.")
        logger.debug(f"Evento '{event}' emitido para a sala {room}.")

# Singleton para gerenciar as conexões
manager = ConnectionManager()
